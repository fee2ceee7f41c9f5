"""In-process live update fan-out for WebSocket subscribers."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import uuid4

from backend.utils.logger import get_logger


logger = get_logger(__name__)

LIVE_LOGS_EVENT = "liveLogs"
STUDENT_UPDATED_EVENT = "studentUpdated"


class Broadcaster(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        ...


@dataclass
class Subscription:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    subscription_id: str = field(default_factory=lambda: uuid4().hex)
    dropped_messages: int = 0


class LiveUpdateBroadcaster:
    """Publishes ``{event, data}`` messages to every connected subscriber.

    ``emit`` may be called from request handlers on the event loop or from
    worker threads; delivery is always scheduled onto the subscriber's loop.
    A slow subscriber loses its oldest queued message instead of blocking
    the publisher.
    """

    def __init__(self, queue_size: int = 100) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        self._queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Register a subscriber bound to the currently running event loop."""
        subscription = Subscription(
            loop=asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        with self._lock:
            self._subscribers[subscription.subscription_id] = subscription
        logger.info("Live subscriber connected: %s", subscription.subscription_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscription.subscription_id, None)
        if removed is not None:
            logger.info("Live subscriber disconnected: %s", subscription.subscription_id)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        message = {"event": event, "data": payload}
        with self._lock:
            subscribers = list(self._subscribers.values())
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(self._enqueue, subscription, message)
            except RuntimeError:
                # Loop already closed; the socket is gone.
                self.unsubscribe(subscription)

    @staticmethod
    def _enqueue(subscription: Subscription, message: dict[str, Any]) -> None:
        if subscription.queue.full():
            subscription.queue.get_nowait()
            subscription.dropped_messages += 1
        subscription.queue.put_nowait(message)
