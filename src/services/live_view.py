"""Shared plumbing for the consumer facades."""

import logging
from collections.abc import Callable
from typing import Any

from models.connection import ConnectionStatus
from models.events import EventType, PushEvent
from services.connection_manager import ConnectionManager
from services.event_bus import EventBus, Handler, Subscription

logger = logging.getLogger(__name__)

CONNECTION_LOST = "Real-time connection lost"

Listener = Callable[[Any], None]


class LiveView:
    """Base for facades: bus subscriptions, listeners and the degraded notice.

    Subclasses implement ``state`` and call ``_notify()`` after every
    mutation, so listeners only ever see complete snapshots. A fetch error
    takes precedence over the connection notice in ``error``; clearing it
    reveals the notice again while the push channel is still down.
    """

    def __init__(self, connection: ConnectionManager, bus: EventBus):
        if connection is None:
            raise ValueError("connection is required")
        if bus is None:
            raise ValueError("bus is required")
        self._connection = connection
        self._bus = bus
        self._error: str | None = None
        self._degraded = False
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Listener] = []
        self._closed = False

        self._on(EventType.CONNECTION_ERROR, self._on_connection_error)
        self._on(EventType.CONNECTED, self._on_connected)
        self._on(EventType.DISCONNECTED, self._on_disconnected)

    @property
    def state(self) -> Any:
        raise NotImplementedError

    @property
    def error(self) -> str | None:
        if self._error:
            return self._error
        return CONNECTION_LOST if self._degraded else None

    @property
    def degraded(self) -> bool:
        """True between a push channel failure and the next successful connect."""
        return self._degraded

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection.status

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(state)`` after every change. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def tick(self) -> None:
        """Advance timers; driven by the run loop."""

    def close(self) -> None:
        """Detach from the bus and release any room this view holds."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        self._release()
        self._listeners.clear()

    def _release(self) -> None:
        """Subclasses release their room here."""

    def _on_reconnected(self) -> None:
        """Called when the push channel comes back after a failure."""

    def _on(self, event_type: EventType, handler: Handler) -> None:
        self._subscriptions.append(self._bus.subscribe(event_type, handler))

    def _on_many(self, event_types, handler: Handler) -> None:
        self._subscriptions.extend(self._bus.subscribe_many(event_types, handler))

    def _on_connection_error(self, event: PushEvent) -> None:
        self._degraded = True
        self._notify()

    def _on_connected(self, event: PushEvent) -> None:
        was_degraded = self._degraded
        self._degraded = False
        if was_degraded:
            self._on_reconnected()
        self._notify()

    def _on_disconnected(self, event: PushEvent) -> None:
        self._degraded = False
        self._notify()

    def _notify(self) -> None:
        if self._closed or not self._listeners:
            return
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(f"{type(self).__name__} listener failed")
