"""Fallback poller used while the push channel cannot be relied on."""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class FallbackPoller:
    """Decides when to re-fetch authoritative state over REST.

    While disconnected, a cycle polls if some run is still active and the
    last successful refresh is at least one interval old. Regardless of
    connection or activity, a refresh is forced once the safety-net window
    has elapsed, so a completion missed on the push channel is picked up
    eventually. Only one poll is ever in flight.
    """

    def __init__(
        self,
        refresh: Callable[[], bool],
        is_connected: Callable[[], bool],
        has_active: Callable[[], bool],
        interval: float = 30.0,
        safety_net_factor: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if refresh is None:
            raise ValueError("refresh is required")
        if is_connected is None:
            raise ValueError("is_connected is required")
        if has_active is None:
            raise ValueError("has_active is required")
        if interval <= 0:
            raise ValueError("interval must be positive")
        if safety_net_factor < 1:
            raise ValueError("safety_net_factor must be at least 1")

        self._refresh = refresh
        self._is_connected = is_connected
        self._has_active = has_active
        self._interval = interval
        self._safety_net = interval * safety_net_factor
        self._clock = clock

        self._enabled = True
        self._in_flight = False
        self._last_success: float | None = None
        self._last_attempt: float | None = None
        self.polls = 0
        self.skipped = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def safety_net_window(self) -> float:
        return self._safety_net

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        self._enabled = True

    def stop(self) -> None:
        self._enabled = False

    def record_refresh(self) -> None:
        """Note a successful refresh made outside the poller (initial load, manual)."""
        now = self._clock()
        self._last_success = now
        self._last_attempt = now

    def is_due(self) -> bool:
        now = self._clock()
        if self._last_attempt is not None and now - self._last_attempt < self._interval:
            return False

        since = (
            now - self._last_success if self._last_success is not None else float("inf")
        )
        if since >= self._safety_net:
            return True
        if self._is_connected():
            return False
        return self._has_active() and since >= self._interval

    def tick(self) -> bool:
        """Run one cycle if due. Returns True if a poll was made."""
        if not self._enabled:
            return False
        if self._in_flight:
            self.skipped += 1
            logger.debug("Poll already in flight, skipping cycle")
            return False
        if not self.is_due():
            return False
        return self.poll_now()

    def poll_now(self) -> bool:
        """Poll immediately unless a poll is already in flight."""
        if self._in_flight:
            self.skipped += 1
            return False

        self._in_flight = True
        self._last_attempt = self._clock()
        try:
            ok = self._refresh()
        finally:
            self._in_flight = False

        self.polls += 1
        if ok:
            self._last_success = self._clock()
        else:
            logger.info(f"Fallback refresh failed, retrying in {self._interval:.0f}s")
        return True
