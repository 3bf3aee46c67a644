"""Node-by-node timeline of one execution, or of the executions of one content."""

import logging
import time
from collections.abc import Callable

from models.connection import Room, RoomKind
from models.events import NODE_EVENT_TYPES, PushEvent
from models.execution import Execution, ExecutionStatus, NodeUpdate
from models.views import TimelineState
from services.connection_manager import ConnectionManager
from services.event_bus import EventBus
from services.live_view import LiveView
from services.normalizer import (
    MalformedEventError,
    node_update_from_node_run,
    normalize_node_update,
)
from services.poller import FallbackPoller
from services.reconciler import ExecutionStore
from services.workflow_api_client import WorkflowApiClient, WorkflowApiError

logger = logging.getLogger(__name__)


class ExecutionTimelineView(LiveView):
    """History of executions seen, with one of them spotlighted as current."""

    def __init__(
        self,
        client: WorkflowApiClient,
        connection: ConnectionManager,
        bus: EventBus,
        max_executions: int = 50,
        poll_interval: float = 30.0,
        safety_net_factor: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(connection, bus)
        if client is None:
            raise ValueError("client is required")
        self._client = client
        self._executions = ExecutionStore(max_executions)
        self._room: Room | None = None
        self._content_id: str | None = None
        self._loading = False

        self._poller = FallbackPoller(
            refresh=lambda: self.refresh(silent=True),
            is_connected=lambda: self._connection.is_connected,
            has_active=self._has_active,
            interval=poll_interval,
            safety_net_factor=safety_net_factor,
            clock=clock,
        )

        self._on_many(NODE_EVENT_TYPES, self._on_node_update)

    @property
    def poller(self) -> FallbackPoller:
        return self._poller

    @property
    def executions(self) -> list[Execution]:
        return self._executions.executions

    @property
    def current_execution(self) -> Execution | None:
        current = self._executions.current
        if current is None and self._executions.selected_id is None and self._content_id:
            current = self._executions.latest_for_content(self._content_id)
        return current

    @property
    def state(self) -> TimelineState:
        return TimelineState(
            executions=self._executions.executions,
            current_execution=self.current_execution,
            content_id=self._content_id,
            loading=self._loading,
            error=self.error,
            connection_status=self.connection_status,
        )

    def connect_to_execution(self, execution_id: str) -> None:
        if not execution_id or not str(execution_id).strip():
            raise ValueError("execution_id is required")
        execution_id = str(execution_id)
        self._content_id = None
        self._executions.select(execution_id)
        self._attach(Room.execution(execution_id))

    def connect_to_content(self, content_id: str | int) -> None:
        if content_id is None or not str(content_id).strip():
            raise ValueError("content_id is required")
        self._content_id = str(content_id).strip()
        self._executions.select(None)
        self._attach(Room.content(self._content_id))

    def select(self, execution_id: str | None) -> Execution | None:
        """Spotlight a known execution; None goes back to the default."""
        if execution_id is not None and self._executions.get(execution_id) is None:
            raise ValueError(f"Unknown execution: {execution_id}")
        selected = self._executions.select(execution_id)
        self._notify()
        return selected

    def disconnect(self) -> None:
        """Leave the room; history is kept."""
        self._release()
        self._notify()

    def clear_history(self) -> None:
        self._executions.clear()
        if self._room is not None and self._room.kind == RoomKind.EXECUTION:
            self._executions.select(self._room.key)
        self._notify()

    def refresh(self, silent: bool = False) -> bool:
        """Reload node runs for the watched content or execution."""
        if self._content_id is None and self._executions.selected_id is None:
            return True

        if not silent:
            self._loading = True
            self._notify()
        try:
            updates = self._fetch_updates()
        except WorkflowApiError as e:
            logger.warning(f"Failed to refresh timeline: {e}")
            self._error = str(e)
            updates = None
        finally:
            self._loading = False

        if updates is None:
            self._notify()
            return False

        self._error = None
        self._executions.apply_many(updates)
        self._poller.record_refresh()
        self._notify()
        return True

    def tick(self) -> None:
        self._poller.tick()

    def close(self) -> None:
        self._poller.stop()
        super().close()

    def _release(self) -> None:
        if self._room is not None and self._connection.room == self._room:
            self._connection.leave_room()
        self._room = None

    def _on_reconnected(self) -> None:
        self.refresh(silent=True)

    def _attach(self, room: Room) -> None:
        self._room = room
        self._connection.join(room)
        self._connection.connect()
        logger.info(f"Timeline following {room.channel}")
        self._notify()

    def _fetch_updates(self) -> list[NodeUpdate]:
        if self._content_id is not None:
            node_runs = self._client.fetch_node_runs_by_content_id(self._content_id)
        else:
            execution_id = self._executions.selected_id
            node_runs = []
            for run in self._client.fetch_all_workflow_runs():
                if run.run_id == execution_id:
                    node_runs = run.node_runs
                    break

        updates = []
        for node_run in node_runs:
            try:
                updates.append(node_update_from_node_run(node_run))
            except MalformedEventError as e:
                logger.warning(f"Skipping node run: {e}")
        return updates

    def _has_active(self) -> bool:
        current = self.current_execution
        if current is None:
            # Nothing observed yet for what we follow.
            return self._room is not None
        return current.status == ExecutionStatus.RUNNING

    def _on_node_update(self, event: PushEvent) -> None:
        try:
            update = normalize_node_update(event.data)
        except MalformedEventError as e:
            logger.warning(f"Dropping {event.type.value}: {e}")
            return

        if (
            update.content_id is None
            and self._room is not None
            and self._room.kind == RoomKind.CONTENT
            and event.channel == self._room.channel
        ):
            update = update.model_copy(update={"content_id": self._room.key})

        if self._executions.apply(update):
            self._notify()
