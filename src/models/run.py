"""Run-oriented records returned by the workflow REST endpoints."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from models.execution import ensure_utc


class RunStatus(str, Enum):
    """Backend status of a workflow run."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_RUN_STATUSES = frozenset({RunStatus.QUEUED, RunStatus.RUNNING})


class OverallStatus(str, Enum):
    """Aggregate workflow status of a content item."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RUNNING = "RUNNING"
    PARTIAL = "PARTIAL"
    NO_DATA = "NO_DATA"


def _coerce_optional_str(v: Any) -> Any:
    if v is None or isinstance(v, str):
        return v
    return str(v)


def _upper(v: Any) -> Any:
    return v.upper() if isinstance(v, str) else v


class ApiModel(BaseModel):
    """Base for camelCase backend payloads."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class NodeRun(ApiModel):
    """Persisted node row as returned by the backend."""

    id: int | None = None
    execution_id: str
    workflow_id: str | None = None
    workflow_name: str | None = None
    node_name: str
    node_type: str | None = None
    status: str
    mode: str | None = None
    finished_at: datetime | None = None
    result_json: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    content_id: str | None = None

    @field_validator("execution_id", "workflow_id", "content_id", mode="before")
    @classmethod
    def ids_as_strings(cls, v: Any) -> Any:
        return _coerce_optional_str(v)

    @field_validator("finished_at", "created_at", "updated_at")
    @classmethod
    def timestamps_are_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class WorkflowRun(ApiModel):
    """Backend run record plus the flags the synchronizer maintains."""

    id: int | None = None
    run_id: str | None = None
    workflow_key: str | None = None
    workflow_id: str | None = None
    workflow_name: str | None = None
    status: RunStatus = RunStatus.QUEUED
    started_at: datetime | None = None
    finished_at: datetime | None = None
    input: str | None = None
    output: str | None = None
    error_message: str | None = None
    user_id: int | None = None
    content_id: str | None = None
    updated_at: datetime | None = None
    node_runs: list[NodeRun] = []

    # Maintained locally, never sent by the backend.
    is_live: bool = False
    last_updated: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def status_upper(cls, v: Any) -> Any:
        return _upper(v)

    @field_validator("run_id", "workflow_id", "content_id", mode="before")
    @classmethod
    def ids_as_strings(cls, v: Any) -> Any:
        return _coerce_optional_str(v)

    @field_validator("started_at", "finished_at", "updated_at", "last_updated")
    @classmethod
    def timestamps_are_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RUN_STATUSES


class ContentWorkflowStatus(ApiModel):
    """Aggregate workflow status for one content item."""

    content_id: str
    overall_status: OverallStatus
    workflow_run: WorkflowRun | None = None
    node_runs: list[NodeRun] = []
    total_nodes: int = 0
    successful_nodes: int = 0
    failed_nodes: int = 0

    @field_validator("content_id", mode="before")
    @classmethod
    def content_id_as_string(cls, v: Any) -> Any:
        return _coerce_optional_str(v)

    @field_validator("overall_status", mode="before")
    @classmethod
    def status_upper(cls, v: Any) -> Any:
        return _upper(v)
