"""Application-level context owning the push connection and the open facades."""

import logging
import time
from collections.abc import Callable

from redis import Redis

from services.connection_manager import ConnectionManager
from services.content_workflow import ContentWorkflowView
from services.event_bus import EventBus
from services.execution_timeline import ExecutionTimelineView
from services.live_view import LiveView
from services.push_transport import RedisPushTransport
from services.run_list import RunListView
from services.settings import SyncSettings
from services.workflow_api_client import WorkflowApiClient

logger = logging.getLogger(__name__)


class SyncContext:
    """One push connection shared by every facade created from it.

    The loop is single-threaded: each turn pumps inbound messages onto the
    bus, samples the connection, retries a failed connection with backoff
    and ticks every open facade.
    """

    def __init__(
        self,
        settings: SyncSettings,
        redis_client: Redis,
        client: WorkflowApiClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if settings is None:
            raise ValueError("settings is required")
        if redis_client is None:
            raise ValueError("redis_client is required")

        self.settings = settings
        self.bus = EventBus()
        self.transport = RedisPushTransport(redis_client)
        self.connection = ConnectionManager(
            self.transport,
            self.bus,
            user_id=settings.user_id,
            sample_interval=settings.sample_interval,
            clock=clock,
        )
        self.client = client or WorkflowApiClient(
            settings.api_url,
            timeout=settings.http_timeout,
            token=settings.api_token,
            user_id=settings.user_id,
        )
        self.running = False
        self._clock = clock
        self._sleep = sleep
        self._views: list[LiveView] = []
        self._last_reconnect: float | None = None

    @property
    def views(self) -> list[LiveView]:
        return [view for view in self._views if not view.closed]

    def run_list(self, refresh: bool = True) -> RunListView:
        view = RunListView(
            self.client,
            self.connection,
            self.bus,
            poll_interval=self.settings.poll_interval,
            safety_net_factor=self.settings.safety_net_factor,
            max_executions=self.settings.max_executions,
            clock=self._clock,
        )
        self._views.append(view)
        if refresh:
            view.refresh()
        return view

    def content_workflow(
        self, content_id: str | int, refresh: bool = True
    ) -> ContentWorkflowView:
        view = ContentWorkflowView(
            self.client,
            self.connection,
            self.bus,
            content_id,
            poll_interval=self.settings.poll_interval,
            safety_net_factor=self.settings.safety_net_factor,
            status_debounce=self.settings.status_debounce,
            max_executions=self.settings.max_executions,
            clock=self._clock,
        )
        self._views.append(view)
        if refresh:
            view.refresh_all()
        return view

    def execution_timeline(
        self,
        execution_id: str | None = None,
        content_id: str | int | None = None,
        refresh: bool = True,
    ) -> ExecutionTimelineView:
        if execution_id and content_id is not None:
            raise ValueError("pass execution_id or content_id, not both")
        view = ExecutionTimelineView(
            self.client,
            self.connection,
            self.bus,
            max_executions=self.settings.max_executions,
            poll_interval=self.settings.poll_interval,
            safety_net_factor=self.settings.safety_net_factor,
            clock=self._clock,
        )
        self._views.append(view)
        if execution_id:
            view.connect_to_execution(execution_id)
        elif content_id is not None:
            view.connect_to_content(content_id)
        if refresh:
            view.refresh()
        return view

    def run_once(self, timeout: float = 0.1) -> int:
        """One loop turn. Returns the number of events delivered."""
        self._views = self.views
        self.connection.sample()
        self._maybe_reconnect()
        delivered = self.connection.pump(timeout)
        for view in list(self._views):
            view.tick()
        return delivered

    def run(self, timeout: float = 0.1) -> None:
        """Loop until stop() is called, then close everything."""
        self.running = True
        logger.info("Sync loop started")
        try:
            while self.running:
                try:
                    delivered = self.run_once(timeout)
                except Exception as e:
                    logger.error(f"Error in sync loop: {e}")
                    self._sleep(timeout)
                    continue
                # pump() only blocks while connected.
                if not delivered and not self.connection.is_connected:
                    self._sleep(timeout)
        finally:
            self.close()
        logger.info("Sync loop stopped")

    def stop(self) -> None:
        """Signal the loop to stop."""
        self.running = False

    def close(self) -> None:
        for view in self._views:
            view.close()
        self._views = []
        self.connection.disconnect()

    def reconnect_delay(self) -> float:
        """Backoff before the next reconnect attempt, capped at the poll interval."""
        failures = max(self.connection.failures, 1)
        delay = self.settings.sample_interval * 2 ** (failures - 1)
        return min(delay, self.settings.poll_interval)

    def _maybe_reconnect(self) -> None:
        connection = self.connection
        if connection.is_connected or connection.room is None or not connection.failures:
            return
        now = self._clock()
        if self._last_reconnect is not None and now - self._last_reconnect < self.reconnect_delay():
            return
        self._last_reconnect = now
        logger.info(f"Reconnecting push channel (attempt {connection.failures + 1})")
        connection.connect()
