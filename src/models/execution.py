"""Execution and node update models for live workflow tracking."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class NodeStatus(str, Enum):
    """Status reported for a single node of an execution."""

    WAITING = "waiting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class NodeMode(str, Enum):
    """Mode the workflow was run in."""

    TEST = "test"
    PRODUCTION = "production"


class ExecutionStatus(str, Enum):
    """Aggregate status derived from the node set of an execution."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NodeUpdate(BaseModel):
    """One reported state of one node within an execution.

    Identity is the pair ``(execution_id, node_name)``.
    """

    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_id: str | None = None
    workflow_name: str = ""
    node_name: str
    node_type: str = "unknown"
    status: NodeStatus
    mode: NodeMode = NodeMode.PRODUCTION
    timestamp: datetime
    # Stamped on arrival because the producer sent none.
    timestamp_inferred: bool = False
    finished_at: datetime | None = None
    content_id: str | None = None
    result: Any = None

    @field_validator("execution_id", "node_name")
    @classmethod
    def identity_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("identity fields must not be empty")
        return v

    @field_validator("timestamp", "finished_at")
    @classmethod
    def timestamps_are_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class Execution(BaseModel):
    """One run of a workflow instance with its ordered node timeline."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_id: str | None = None
    workflow_name: str = ""
    content_id: str | None = None
    status: ExecutionStatus
    started_at: datetime
    last_updated: datetime
    nodes: list[NodeUpdate] = []

    def node(self, node_name: str) -> NodeUpdate | None:
        """Return the stored update for a node, if any."""
        for item in self.nodes:
            if item.node_name == node_name:
                return item
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING
