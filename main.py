import argparse
import threading
import sys
from pathlib import Path

import uvicorn

from backend.events import EventBroker, STATUS_START, STATUS_STOP
from backend.server import create_app
from shared.config import DEFAULT_CONFIG_FILE, Settings, load_settings
from shared.exceptions import ConfigurationError
from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)


class ServerManager:
    """Manages the backend server lifecycle"""

    def __init__(self, settings: Settings, config_file: Path = DEFAULT_CONFIG_FILE,
                 host: str = "0.0.0.0", broker: EventBroker = None):
        self.settings = settings
        self.broker = broker or EventBroker()
        self.app = create_app(settings, config_file=config_file, broker=self.broker)
        self.server = None
        self.server_thread = None
        self.config = uvicorn.Config(
            self.app,
            host=host,
            port=settings.port,
            log_level="info",
            workers=1,
            loop="asyncio",
            timeout_keep_alive=30,
            timeout_graceful_shutdown=10
        )
        self.should_run = True

    @property
    def status(self) -> str:
        if self.server_thread is not None and self.server_thread.is_alive() and self.should_run:
            return STATUS_START
        return STATUS_STOP

    def start(self):
        """Start the server in a non-blocking way"""
        logger.info(f"Starting backend server on port {self.settings.port}")
        self.should_run = True
        self.server = uvicorn.Server(self.config)
        self.server_thread = threading.Thread(target=self._run_server, daemon=True)
        self.server_thread.start()
        self.broker.publish_status(STATUS_START)
        logger.info("Backend server thread started")

    def _run_server(self):
        try:
            self.server.run()
        except Exception as e:
            logger.error(f"Server error: {str(e)}", exc_info=True)
        finally:
            self.should_run = False

    def stop(self):
        """Stop the server gracefully"""
        self.should_run = False
        if self.server:
            self.server.should_exit = True
            logger.info("Server graceful shutdown requested.")
        self.broker.publish_status(STATUS_STOP)

    def wait(self):
        if self.server_thread is not None:
            self.server_thread.join()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Share files, folders and text snippets on the local network")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (overrides settings)")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_FILE, help="Settings file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1
    if args.port is not None:
        settings.port = args.port

    manager = ServerManager(settings, config_file=args.config, host=args.host)
    logger.info(f"Server is starting on {settings.url}")
    manager.start()
    try:
        manager.wait()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, stopping server")
        manager.stop()
        manager.wait()
    logger.info("Shutdown complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
