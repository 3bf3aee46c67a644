"""Typed publish/subscribe bus between the connection and its consumers."""

import logging
from collections.abc import Callable

from models.events import EventType, PushEvent

logger = logging.getLogger(__name__)

Handler = Callable[[PushEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe; cancel() detaches the handler."""

    def __init__(self, bus: "EventBus", event_type: EventType, handler: Handler):
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False


class EventBus:
    """Dispatches events to handlers registered per event type.

    Handlers run synchronously, in registration order, on the caller's
    thread. An exception in one handler is logged and does not prevent the
    remaining handlers from running.
    """

    def __init__(self):
        self._handlers: dict[EventType, list[Subscription]] = {}

    def subscribe(self, event_type: EventType, handler: Handler) -> Subscription:
        """Register a handler for one event type."""
        if handler is None:
            raise ValueError("handler is required")
        subscription = Subscription(self, event_type, handler)
        self._handlers.setdefault(event_type, []).append(subscription)
        return subscription

    def subscribe_many(
        self, event_types: set[EventType] | frozenset[EventType], handler: Handler
    ) -> list[Subscription]:
        """Register the same handler for several event types."""
        return [self.subscribe(t, handler) for t in sorted(event_types, key=lambda t: t.value)]

    def publish(self, event: PushEvent) -> int:
        """Deliver an event. Returns the number of handlers invoked."""
        invoked = 0
        for subscription in list(self._handlers.get(event.type, [])):
            # A handler earlier in this dispatch may have cancelled it.
            if not subscription.active:
                continue
            invoked += 1
            try:
                subscription.handler(event)
            except Exception:
                logger.exception(f"Handler for {event.type.value} failed")
        return invoked

    def handler_count(self, event_type: EventType) -> int:
        return len(self._handlers.get(event_type, []))

    def _remove(self, subscription: Subscription) -> None:
        handlers = self._handlers.get(subscription.event_type, [])
        if subscription in handlers:
            handlers.remove(subscription)
