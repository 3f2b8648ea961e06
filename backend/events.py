# fshare/backend/events.py

import asyncio
import json
import threading
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict

from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)

KEEPALIVE_SECONDS = 15.0
STATUS_START = "start"
STATUS_STOP = "stop"


@dataclass
class Subscriber:
    id: str
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)


def format_event(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


class EventBroker:
    """
    Fans events out to connected server-sent-event clients.

    publish() may be called from any thread: request handlers run in the
    threadpool, while each subscriber's queue belongs to the event loop
    that accepted its connection.
    """

    def __init__(self, keepalive: float = KEEPALIVE_SECONDS):
        self.keepalive = keepalive
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(id=uuid.uuid4().hex, loop=asyncio.get_running_loop())
        with self._lock:
            self._subscribers[subscriber.id] = subscriber
        logger.info(f"{subscriber.id} Connection connected")
        return subscriber

    def unsubscribe(self, subscriber_id: str) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscriber_id, None)
        if removed is not None:
            logger.info(f"{subscriber_id} Connection closed")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: dict) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        logger.debug(f"Publishing {event.get('type')} to {len(subscribers)} subscribers")
        for subscriber in subscribers:
            try:
                subscriber.loop.call_soon_threadsafe(subscriber.queue.put_nowait, event)
            except RuntimeError:
                # Loop already closed, the connection is gone
                self.unsubscribe(subscriber.id)

    async def stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        try:
            yield format_event({"type": "registry", "data": {"id": subscriber.id}})
            while True:
                try:
                    event = await asyncio.wait_for(subscriber.queue.get(), timeout=self.keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_event(event)
        finally:
            self.unsubscribe(subscriber.id)

    def publish_registry_change(self, action: str, entry) -> None:
        self.publish({"type": "files.change", "data": {"action": action, "name": entry.name, "kind": entry.kind.value}})

    def publish_status(self, status: str) -> None:
        self.publish({"type": "server.statusChange", "data": {"status": status}})
