"""Snapshots exposed by the consumer facades."""

from pydantic import BaseModel, ConfigDict

from models.connection import ConnectionStatus
from models.execution import Execution, NodeUpdate
from models.run import ContentWorkflowStatus, WorkflowRun


class RunListState(BaseModel):
    """State of the run list view."""

    model_config = ConfigDict(frozen=True)

    runs: list[WorkflowRun] = []
    loading: bool = False
    error: str | None = None
    connected_execution_id: str | None = None
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED


class ContentWorkflowState(BaseModel):
    """State of the single-content workflow view."""

    model_config = ConfigDict(frozen=True)

    content_id: str
    status: ContentWorkflowStatus | None = None
    workflow_runs: list[WorkflowRun] = []
    node_runs: list[NodeUpdate] = []
    latest_node_run: NodeUpdate | None = None
    loading: bool = False
    status_loading: bool = False
    workflow_runs_loading: bool = False
    node_runs_loading: bool = False
    error: str | None = None
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED


class TimelineState(BaseModel):
    """State of the execution timeline view."""

    model_config = ConfigDict(frozen=True)

    executions: list[Execution] = []
    current_execution: Execution | None = None
    content_id: str | None = None
    loading: bool = False
    error: str | None = None
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
