# fshare/shared/config.py

import os
import json
import socket
from pathlib import Path
from dataclasses import dataclass, asdict, fields, replace
import logging

from shared.exceptions import ConfigurationError
from shared.network import get_local_ip

# Set up a logger for this module
logger = logging.getLogger(__name__)

HOME = Path.home()
CONFIG_DIR = HOME / ".fshare"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.json"

DEFAULT_PORT = 5421


@dataclass
class Settings:
    upload_dir: Path
    storage_file: Path
    port: int = DEFAULT_PORT
    ip: str = "127.0.0.1"
    auth_enable: bool = False
    password: str = "password"
    tus_enable: bool = False
    chunk_size: int = 20
    machine_id: str = "unknown"

    @property
    def url(self) -> str:
        return f"http://{self.ip}:{self.port}"

    def to_json(self) -> dict:
        data = asdict(self)
        data["upload_dir"] = str(self.upload_dir)
        data["storage_file"] = str(self.storage_file)
        return data


def get_machine_id() -> str:
    """
    Stable machine identity used to scope the registry inside the storage file,
    so several machines sharing one storage file do not collide.
    """
    try:
        return socket.gethostname() or "unknown"
    except OSError as e:
        logger.warning(f"Could not read hostname: {e}")
        return "unknown"


def default_settings() -> Settings:
    return Settings(
        upload_dir=HOME / "Downloads",
        storage_file=CONFIG_DIR / "cache" / "files.json",
        ip=get_local_ip("ipv4"),
        machine_id=get_machine_id(),
    )


def _coerce(name: str, value):
    if name in ("upload_dir", "storage_file"):
        return Path(value).expanduser()
    if name in ("port", "chunk_size"):
        return int(value)
    if name in ("auth_enable", "tus_enable"):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    return str(value)


def _apply(settings: Settings, values: dict) -> Settings:
    known = {f.name for f in fields(Settings)}
    changes = {}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting: {key}")
            continue
        try:
            changes[key] = _coerce(key, value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {key}: {value!r}") from e
    return replace(settings, **changes)


ENV_OVERRIDES = {
    "FSHARE_PORT": "port",
    "FSHARE_UPLOAD_DIR": "upload_dir",
    "FSHARE_STORAGE_FILE": "storage_file",
    "FSHARE_PASSWORD": "password",
    "FSHARE_AUTH_ENABLE": "auth_enable",
}


def save_settings(settings: Settings, config_file: Path) -> None:
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(json.dumps(settings.to_json(), indent=2))
    except OSError as e:
        raise ConfigurationError(f"Error writing config file {config_file}: {e}") from e
    logger.debug(f"Settings saved to {config_file}")


def load_settings(config_file: Path = DEFAULT_CONFIG_FILE) -> Settings:
    """
    Builds the effective settings: defaults, then the JSON config file,
    then environment overrides. The result is written back to config_file.
    """
    config_file = Path(config_file)
    settings = default_settings()

    if config_file.exists():
        try:
            data = json.loads(config_file.read_text() or "{}")
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Error reading config file {config_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_file} must hold a JSON object")
        settings = _apply(settings, data)
        logger.info(f"Loaded settings from {config_file}")

    env_values = {name: os.environ[var] for var, name in ENV_OVERRIDES.items() if var in os.environ}
    if env_values:
        logger.info(f"Applying environment overrides: {sorted(env_values)}")
        settings = _apply(settings, env_values)

    save_settings(settings, config_file)
    return settings


def validate_upload_dir(path: Path) -> None:
    if not path.exists():
        raise ConfigurationError(f"Upload path does not exist: {path}")
    if not path.is_dir():
        raise ConfigurationError("Upload path must be a directory")


def update_settings(settings: Settings, config_file: Path, changes: dict) -> Settings:
    """Validates and persists a settings change, returning the new settings."""
    new_settings = _apply(settings, changes)

    if new_settings.upload_dir != settings.upload_dir:
        validate_upload_dir(new_settings.upload_dir)
    if new_settings.port <= 0 or new_settings.port > 65535:
        raise ConfigurationError("Invalid port number")
    if new_settings.chunk_size <= 0:
        raise ConfigurationError("Chunk size must be greater than 0")

    save_settings(new_settings, Path(config_file))
    logger.info(f"Settings updated: {sorted(changes)}")
    return new_settings
