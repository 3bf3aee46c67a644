"""Single-content facade: aggregate workflow status plus raw run and node data."""

import logging
import time
from collections.abc import Callable
from typing import Any

from models.connection import Room
from models.events import NODE_EVENT_TYPES, EventType, PushEvent
from models.execution import NodeStatus, NodeUpdate
from models.run import ContentWorkflowStatus, OverallStatus
from models.views import ContentWorkflowState
from services.connection_manager import ConnectionManager
from services.event_bus import EventBus
from services.live_view import LiveView
from services.normalizer import (
    MalformedEventError,
    node_update_from_node_run,
    normalize_node_update,
    normalize_run_patch,
    parse_node_status,
)
from services.poller import FallbackPoller
from services.reconciler import ExecutionStore, RunStore
from services.workflow_api_client import WorkflowApiClient, WorkflowApiError

logger = logging.getLogger(__name__)


def _finished_key(update: NodeUpdate):
    return update.finished_at or update.timestamp


class ContentWorkflowView(LiveView):
    """Tracks every workflow run and node run of one content item.

    The aggregate status is re-fetched after each push event about the
    content; events arriving within ``status_debounce`` seconds of each
    other cause a single fetch. While the aggregate status is RUNNING the
    view joins the content room on its own.
    """

    def __init__(
        self,
        client: WorkflowApiClient,
        connection: ConnectionManager,
        bus: EventBus,
        content_id: str | int,
        poll_interval: float = 30.0,
        safety_net_factor: float = 3.0,
        status_debounce: float = 0.5,
        max_executions: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(connection, bus)
        if client is None:
            raise ValueError("client is required")
        if content_id is None or not str(content_id).strip():
            raise ValueError("content_id is required")
        if status_debounce < 0:
            raise ValueError("status_debounce must be non-negative")

        self._client = client
        self._content_id = str(content_id).strip()
        self._room = Room.content(self._content_id)
        self._status_debounce = status_debounce
        self._clock = clock

        self._status: ContentWorkflowStatus | None = None
        self._runs = RunStore()
        self._executions = ExecutionStore(max_executions)
        self._latest: NodeUpdate | None = None
        self._node_filter: str | None = None

        self._status_loading = False
        self._runs_loading = False
        self._nodes_loading = False
        self._status_due: float | None = None
        self._live = False
        self._auto_connect = True

        self._poller = FallbackPoller(
            refresh=self.refresh_all,
            is_connected=lambda: self._connection.is_connected,
            has_active=self._has_active,
            interval=poll_interval,
            safety_net_factor=safety_net_factor,
            clock=clock,
        )

        self._on(EventType.RUN_UPDATE, self._on_run_update)
        self._on_many(NODE_EVENT_TYPES, self._on_node_event)

    @property
    def content_id(self) -> str:
        return self._content_id

    @property
    def poller(self) -> FallbackPoller:
        return self._poller

    @property
    def is_live(self) -> bool:
        return self._live

    @property
    def state(self) -> ContentWorkflowState:
        return ContentWorkflowState(
            content_id=self._content_id,
            status=self._status,
            workflow_runs=self._runs.runs,
            node_runs=self._node_runs(),
            latest_node_run=self._latest,
            loading=self._status_loading or self._runs_loading or self._nodes_loading,
            status_loading=self._status_loading,
            workflow_runs_loading=self._runs_loading,
            node_runs_loading=self._nodes_loading,
            error=self.error,
            connection_status=self.connection_status,
        )

    def refresh_status(self) -> bool:
        """Fetch the aggregate status. Returns True on success."""
        self._status_loading = True
        self._notify()
        status = self._fetch(
            "workflow status", self._client.fetch_content_workflow_status
        )
        self._status_loading = False

        if status is not None:
            self._status = status
            self._status_due = None
            self._ensure_live()
        self._notify()
        return status is not None

    def refresh_workflow_runs(self) -> bool:
        self._runs_loading = True
        self._notify()
        runs = self._fetch(
            "workflow runs", self._client.fetch_workflow_runs_by_content_id
        )
        self._runs_loading = False

        if runs is not None:
            self._runs.sync(runs)
        self._notify()
        return runs is not None

    def refresh_node_runs(self, status_filter: str | None = None) -> bool:
        """Fetch node runs, optionally only those with one status.

        The filter also applies to ``node_runs`` in the state until the next
        call with a different filter.
        """
        if status_filter:
            try:
                parse_node_status(status_filter)
            except MalformedEventError as e:
                raise ValueError(str(e)) from e

        self._nodes_loading = True
        self._notify()
        node_runs = self._fetch(
            "node runs",
            self._client.fetch_node_runs_by_content_id,
            status=status_filter,
        )
        self._nodes_loading = False

        if node_runs is not None:
            self._node_filter = status_filter or None
            updates = []
            for node_run in node_runs:
                try:
                    updates.append(node_update_from_node_run(node_run))
                except MalformedEventError as e:
                    logger.warning(f"Skipping node run for content {self._content_id}: {e}")
            self._executions.apply_many(updates)
            for update in updates:
                self._offer_latest(update)
        self._notify()
        return node_runs is not None

    def refresh_latest_node_run(self) -> bool:
        try:
            node_run = self._client.fetch_latest_node_run_by_content_id(self._content_id)
        except WorkflowApiError as e:
            if e.status_code == 404:
                return True
            logger.warning(f"Failed to load latest node run for content {self._content_id}: {e}")
            self._error = f"Failed to load latest node run: {e}"
            self._notify()
            return False

        try:
            update = node_update_from_node_run(node_run)
        except MalformedEventError as e:
            logger.warning(f"Ignoring latest node run for content {self._content_id}: {e}")
            return True
        self._executions.apply(update)
        self._offer_latest(update)
        self._notify()
        return True

    def refresh_all(self) -> bool:
        """Reload everything; a failure in one part does not stop the others."""
        self._error = None
        results = [
            self.refresh_status(),
            self.refresh_workflow_runs(),
            self.refresh_node_runs(self._node_filter),
            self.refresh_latest_node_run(),
        ]
        ok = all(results)
        if ok:
            self._poller.record_refresh()
        return ok

    def connect_to_content(self) -> None:
        """Join this content's room and open the push connection."""
        self._auto_connect = True
        self._live = True
        self._connection.join(self._room)
        self._connection.connect()
        self._notify()

    def disconnect_from_content(self) -> None:
        """Leave the content room; automatic reconnection stays off until
        connect_to_content() is called again."""
        self._auto_connect = False
        self._leave()
        self._notify()

    def tick(self) -> None:
        if self._status_due is not None and self._clock() >= self._status_due:
            self.refresh_status()
        self._poller.tick()

    def close(self) -> None:
        self._poller.stop()
        super().close()

    def _release(self) -> None:
        self._leave()

    def _on_reconnected(self) -> None:
        self.refresh_all()

    def _leave(self) -> None:
        if not self._live:
            return
        if self._connection.room == self._room:
            self._connection.leave_room()
        self._live = False

    def _ensure_live(self) -> None:
        if self._status is None or self._status.overall_status != OverallStatus.RUNNING:
            return
        # Once live, reconnects follow the run loop's backoff.
        if not self._live and self._auto_connect:
            logger.info(f"Content {self._content_id} is running, going live")
            self.connect_to_content()

    def _has_active(self) -> bool:
        running = (
            self._status is not None
            and self._status.overall_status == OverallStatus.RUNNING
        )
        return running or self._runs.has_active()

    def _fetch(self, what: str, call: Callable[..., Any], **kwargs) -> Any:
        try:
            return call(self._content_id, **kwargs)
        except WorkflowApiError as e:
            logger.warning(f"Failed to load {what} for content {self._content_id}: {e}")
            self._error = f"Failed to load {what}: {e}"
            return None

    def _node_runs(self) -> list[NodeUpdate]:
        nodes = self._executions.nodes_for_content(self._content_id)
        if not self._node_filter:
            return nodes
        wanted: NodeStatus = parse_node_status(self._node_filter)
        return [node for node in nodes if node.status == wanted]

    def _offer_latest(self, update: NodeUpdate) -> bool:
        if self._latest is not None and _finished_key(update) <= _finished_key(self._latest):
            return False
        self._latest = update
        return True

    def _concerns(self, event: PushEvent) -> bool:
        if event.channel == self._room.channel:
            return True
        content_id = event.data.get("contentId", event.data.get("content_id"))
        return content_id is not None and str(content_id) == self._content_id

    def _schedule_status_refresh(self) -> None:
        if self._status_due is None:
            self._status_due = self._clock() + self._status_debounce

    def _on_node_event(self, event: PushEvent) -> None:
        if not self._concerns(event):
            return

        changed = False
        try:
            update = normalize_node_update(event.data)
        except MalformedEventError as e:
            logger.debug(f"{event.type.value} for content {self._content_id} has no node data: {e}")
        else:
            if update.content_id is None:
                update = update.model_copy(update={"content_id": self._content_id})
            changed = self._executions.apply(update)
            changed = self._offer_latest(update) or changed

        self._schedule_status_refresh()
        if changed:
            self._notify()

    def _on_run_update(self, event: PushEvent) -> None:
        if not self._concerns(event):
            return
        try:
            patch = normalize_run_patch(event.data)
        except MalformedEventError as e:
            logger.warning(f"Dropping run update for content {self._content_id}: {e}")
            return
        patch.setdefault("content_id", self._content_id)
        if self._runs.upsert(patch):
            self._notify()
        self._schedule_status_refresh()
