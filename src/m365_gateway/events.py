"""
In-process event bus for gateway notifications.

Publishing is best effort: delivery is at-most-once, buffers are bounded
(the oldest event is dropped when a buffer is full) and a failing
subscriber callback never affects the publisher or other subscribers.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    type: str
    payload: dict[str, Any]
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


@dataclass
class EventSubscription:
    """Subscription to events from the bus."""

    event_types: Optional[frozenset[str]] = None  # None = all types
    max_queue_size: int = 1000
    callback: Optional[Callable[[Event], None]] = None
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self._buffer: deque[Event] = deque(maxlen=self.max_queue_size)

    def matches(self, event: Event) -> bool:
        return self.event_types is None or event.type in self.event_types

    def deliver(self, event: Event) -> None:
        self._buffer.append(event)
        if self.callback is not None:
            self.callback(event)

    def drain(self) -> list[Event]:
        """Return and clear the buffered events."""
        events = list(self._buffer)
        self._buffer.clear()
        return events


class EventBus:
    """Bounded, non-blocking publish/subscribe channel."""

    def __init__(self):
        self._subscriptions: dict[str, EventSubscription] = {}

    def subscribe(
        self,
        event_types: Optional[set[str]] = None,
        max_queue_size: int = 1000,
        callback: Optional[Callable[[Event], None]] = None,
    ) -> EventSubscription:
        subscription = EventSubscription(
            event_types=frozenset(event_types) if event_types else None,
            max_queue_size=max_queue_size,
            callback=callback,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        self._subscriptions.pop(subscription.subscription_id, None)

    def publish(self, event_type: str, payload: Optional[dict[str, Any]] = None) -> None:
        event = Event(type=event_type, payload=dict(payload or {}))
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(event):
                continue
            try:
                subscription.deliver(event)
            except Exception as e:
                # Delivery is best effort; a broken subscriber only loses its event
                logger.debug(
                    f"Event {event_type} not delivered to "
                    f"{subscription.subscription_id}: {e}"
                )


class NullEventBus(EventBus):
    """Event bus that discards everything."""

    def publish(self, event_type: str, payload: Optional[dict[str, Any]] = None) -> None:
        return None
