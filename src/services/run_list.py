"""Run list facade: every workflow run of the user, one of them watched live."""

import logging
import time
from collections.abc import Callable
from typing import Any

from models.connection import Room
from models.events import NODE_EVENT_TYPES, EventType, PushEvent
from models.execution import Execution
from models.run import WorkflowRun
from models.views import RunListState
from services.connection_manager import ConnectionManager
from services.event_bus import EventBus
from services.live_view import LiveView
from services.normalizer import (
    MalformedEventError,
    normalize_node_update,
    normalize_run_patch,
)
from services.poller import FallbackPoller
from services.reconciler import ExecutionStore, RunStore
from services.workflow_api_client import WorkflowApiClient, WorkflowApiError

logger = logging.getLogger(__name__)


class RunListView(LiveView):
    """Keeps the run list current from push events and REST refreshes.

    When nothing is watched, the most recently started run that is still
    queued or running is watched automatically. The room is released as
    soon as the watched run reaches a terminal status. An explicit
    disconnect() turns automatic watching off until the next
    connect_to_execution() or trigger_workflow().
    """

    def __init__(
        self,
        client: WorkflowApiClient,
        connection: ConnectionManager,
        bus: EventBus,
        poll_interval: float = 30.0,
        safety_net_factor: float = 3.0,
        max_executions: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(connection, bus)
        if client is None:
            raise ValueError("client is required")
        self._client = client
        self._runs = RunStore()
        self._executions = ExecutionStore(max_executions)
        self._loading = False
        self._refreshing = False
        self._watched: str | None = None
        self._auto_watch = True

        self._poller = FallbackPoller(
            refresh=lambda: self.refresh(silent=True),
            is_connected=lambda: self._connection.is_connected,
            has_active=self._runs.has_active,
            interval=poll_interval,
            safety_net_factor=safety_net_factor,
            clock=clock,
        )

        self._on(EventType.RUN_UPDATE, self._on_run_update)
        self._on_many(NODE_EVENT_TYPES, self._on_node_update)

    @property
    def state(self) -> RunListState:
        return RunListState(
            runs=self._runs.runs,
            loading=self._loading,
            error=self.error,
            connected_execution_id=self._watched,
            connection_status=self.connection_status,
        )

    @property
    def poller(self) -> FallbackPoller:
        return self._poller

    @property
    def connected_execution_id(self) -> str | None:
        return self._watched

    def execution(self, execution_id: str) -> Execution | None:
        """Node-level view of an execution observed on the push channel."""
        return self._executions.get(execution_id)

    def refresh(self, silent: bool = False) -> bool:
        """Re-fetch every run. Returns True on success.

        A silent refresh leaves ``loading`` untouched. A call made while a
        refresh is already running is ignored.
        """
        if self._refreshing:
            logger.debug("Run list refresh already in progress")
            return False

        self._refreshing = True
        if not silent:
            self._loading = True
            self._notify()
        try:
            runs = self._client.fetch_all_workflow_runs()
        except WorkflowApiError as e:
            logger.warning(f"Failed to fetch workflow runs: {e}")
            self._error = str(e)
            runs = None
        finally:
            self._refreshing = False
            self._loading = False

        if runs is None:
            self._notify()
            return False

        self._error = None
        changed = self._runs.sync(runs)
        self._poller.record_refresh()
        if changed:
            logger.debug(f"Run list refreshed ({len(runs)} runs)")
        self._reconcile_watch()
        self._notify()
        return True

    def connect_to_execution(self, run_id: str) -> None:
        """Watch one run live, replacing any previously watched run."""
        if not run_id or not str(run_id).strip():
            raise ValueError("run_id is required")
        run_id = str(run_id)
        self._auto_watch = True
        self._watch(run_id)
        self._notify()

    def disconnect(self) -> None:
        """Stop watching; the shared push connection itself stays open."""
        self._auto_watch = False
        self._unwatch()
        self._notify()

    def trigger_workflow(
        self,
        content_id: str | int,
        payload: dict[str, Any] | None = None,
        workflow_key: str = "ai-avatar",
    ) -> WorkflowRun | None:
        """Start a workflow and watch the new run. Returns None on failure."""
        try:
            run = self._client.trigger_workflow(content_id, payload, workflow_key)
        except WorkflowApiError as e:
            logger.error(f"Failed to trigger workflow for content {content_id}: {e}")
            self._error = f"Failed to trigger workflow: {e}"
            self._notify()
            return None

        logger.info(f"Triggered {workflow_key} for content {content_id}: run {run.run_id}")
        self._error = None
        self._runs.put(run)
        self.connect_to_execution(run.run_id)
        return self._runs.get(run.run_id)

    def tick(self) -> None:
        self._poller.tick()

    def close(self) -> None:
        self._poller.stop()
        super().close()

    def _release(self) -> None:
        self._unwatch()

    def _on_reconnected(self) -> None:
        # Events published while the channel was down are lost.
        self.refresh(silent=True)

    def _watch(self, run_id: str) -> None:
        self._watched = run_id
        self._executions.select(run_id)
        self._connection.join_execution_room(run_id)
        self._connection.connect()
        self._runs.mark_live(run_id)
        logger.info(f"Watching run {run_id}")

    def _unwatch(self) -> None:
        if self._watched is None:
            return
        if self._connection.room == Room.execution(self._watched):
            self._connection.leave_room()
        logger.info(f"Stopped watching run {self._watched}")
        self._watched = None
        self._executions.select(None)
        self._runs.mark_live(None)

    def _reconcile_watch(self) -> None:
        if self._watched is not None:
            run = self._runs.get(self._watched)
            if run is not None and not run.is_active:
                logger.info(f"Run {self._watched} ended with status {run.status.value}")
                self._unwatch()

        if self._watched is None and self._auto_watch:
            candidate = self._runs.most_recent_active()
            if candidate is not None:
                self._watch(candidate.run_id)

    def _on_run_update(self, event: PushEvent) -> None:
        try:
            patch = normalize_run_patch(event.data)
        except MalformedEventError as e:
            logger.warning(f"Dropping run update: {e}")
            return
        if self._runs.upsert(patch):
            self._reconcile_watch()
            self._notify()

    def _on_node_update(self, event: PushEvent) -> None:
        try:
            update = normalize_node_update(event.data)
        except MalformedEventError as e:
            logger.warning(f"Dropping {event.type.value}: {e}")
            return

        changed = self._executions.apply(update)
        if changed and update.execution_id == self._watched:
            self._runs.apply_node_progress(update.execution_id, update)
        if changed:
            self._notify()
