# Services package

from services.connection_manager import ConnectionManager
from services.content_workflow import ContentWorkflowView
from services.event_bus import EventBus, Subscription
from services.execution_timeline import ExecutionTimelineView
from services.live_view import CONNECTION_LOST, LiveView
from services.log_service import SizeAndTimeRotatingHandler, configure_logging
from services.normalizer import (
    MalformedEventError,
    node_update_from_node_run,
    normalize_node_update,
    normalize_run_patch,
)
from services.poller import FallbackPoller
from services.push_transport import RedisPushTransport, TransportError, publish_event
from services.reconciler import ExecutionStore, RunStore, derive_execution_status
from services.run_list import RunListView
from services.settings import SyncSettings
from services.sync_context import SyncContext
from services.workflow_api_client import WorkflowApiClient, WorkflowApiError

__all__ = [
    "CONNECTION_LOST",
    "ConnectionManager",
    "ContentWorkflowView",
    "EventBus",
    "ExecutionStore",
    "ExecutionTimelineView",
    "FallbackPoller",
    "LiveView",
    "MalformedEventError",
    "RedisPushTransport",
    "RunListView",
    "RunStore",
    "SizeAndTimeRotatingHandler",
    "Subscription",
    "SyncContext",
    "SyncSettings",
    "TransportError",
    "WorkflowApiClient",
    "WorkflowApiError",
    "configure_logging",
    "derive_execution_status",
    "node_update_from_node_run",
    "normalize_node_update",
    "normalize_run_patch",
    "publish_event",
]
