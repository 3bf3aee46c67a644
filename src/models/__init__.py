"""Models package."""

from models.connection import ConnectionState, ConnectionStatus, Room, RoomKind
from models.events import NODE_EVENT_TYPES, PUSHED_EVENT_TYPES, EventType, PushEvent
from models.execution import (
    Execution,
    ExecutionStatus,
    NodeMode,
    NodeStatus,
    NodeUpdate,
)
from models.run import (
    ACTIVE_RUN_STATUSES,
    ContentWorkflowStatus,
    NodeRun,
    OverallStatus,
    RunStatus,
    WorkflowRun,
)
from models.views import ContentWorkflowState, RunListState, TimelineState

__all__ = [
    "ACTIVE_RUN_STATUSES",
    "ConnectionState",
    "ConnectionStatus",
    "ContentWorkflowState",
    "ContentWorkflowStatus",
    "EventType",
    "Execution",
    "ExecutionStatus",
    "NODE_EVENT_TYPES",
    "NodeMode",
    "NodeRun",
    "NodeStatus",
    "NodeUpdate",
    "OverallStatus",
    "PUSHED_EVENT_TYPES",
    "PushEvent",
    "Room",
    "RoomKind",
    "RunListState",
    "RunStatus",
    "TimelineState",
    "WorkflowRun",
]
