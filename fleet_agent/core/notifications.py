"""
In-process notification fan-out.

Every active subscriber receives every notification published while it is
attached. Notifications published with nobody listening are dropped and
logged; they are never buffered or replayed to late subscribers.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..logs import get_logger

DEFAULT_SOURCE = "heartbeat"

logger = get_logger("notifications")

_CLOSED = object()


@dataclass(frozen=True)
class Notification:
    """Ephemeral text notification pushed to connected clients."""
    text: str
    timestamp: str
    source: str = DEFAULT_SOURCE

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class Subscription:
    """Live sequence of notifications for one connected client.

    Iterate with `async for`; iteration ends once the subscription is closed.
    """

    def __init__(self, bus: "NotificationBus"):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def deliver(self, notification: Notification) -> None:
        if not self.closed:
            self._queue.put_nowait(notification)

    async def get(self) -> Optional[Notification]:
        """Wait for the next notification; None once the subscription is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def _mark_closed(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Notification:
        notification = await self.get()
        if notification is None:
            raise StopAsyncIteration
        return notification

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class NotificationBus:
    """Publish/subscribe channel shared by the heartbeat and SSE clients."""

    def __init__(self):
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.append(subscription)
        logger.debug("Subscriber attached (%d active)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscriber immediately. Unsubscribing twice is a no-op."""
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.debug("Subscriber detached (%d active)", len(self._subscribers))
        subscription._mark_closed()

    def publish(self, text: str, source: str = DEFAULT_SOURCE) -> Notification:
        """Publish a notification to every active subscriber.

        Args:
            text: Notification body
            source: Origin tag, "heartbeat" by default

        Returns:
            The notification, whether or not anybody received it
        """
        notification = Notification(
            text=text,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=source
        )

        # Snapshot so attach/detach during delivery does not affect this publish.
        subscribers = tuple(self._subscribers)
        if not subscribers:
            logger.info("No channel connected, notification dropped: %s...", text[:80])
            return notification

        for subscription in subscribers:
            subscription.deliver(notification)
        logger.debug("Notification from %s delivered to %d subscriber(s)", source, len(subscribers))
        return notification
