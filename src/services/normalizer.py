"""Canonicalization of inbound execution, run and node payloads.

Push events arrive in slightly different shapes depending on whether they
were published to an execution, workflow or content room, and polled node
rows come back as NodeRun records. Everything is mapped to one NodeUpdate
shape here so the reconciler has a single input type.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from models.execution import NodeMode, NodeStatus, NodeUpdate
from models.run import NodeRun, WorkflowRun

logger = logging.getLogger(__name__)


class MalformedEventError(Exception):
    """Raised when a payload cannot be mapped to a canonical update."""

    pass


_STATUS_ALIASES = {
    "waiting": NodeStatus.WAITING,
    "queued": NodeStatus.WAITING,
    "pending": NodeStatus.WAITING,
    "new": NodeStatus.WAITING,
    "running": NodeStatus.RUNNING,
    "started": NodeStatus.RUNNING,
    "success": NodeStatus.SUCCESS,
    "succeeded": NodeStatus.SUCCESS,
    "completed": NodeStatus.SUCCESS,
    "complete": NodeStatus.SUCCESS,
    "failed": NodeStatus.FAILED,
    "error": NodeStatus.FAILED,
    "crashed": NodeStatus.FAILED,
    "canceled": NodeStatus.FAILED,
    "cancelled": NodeStatus.FAILED,
}

_MODE_ALIASES = {
    "test": NodeMode.TEST,
    "manual": NodeMode.TEST,
    "production": NodeMode.PRODUCTION,
    "trigger": NodeMode.PRODUCTION,
    "webhook": NodeMode.PRODUCTION,
}

# camelCase wire key -> snake_case model field
_RUN_FIELDS = {
    "id": "id",
    "runId": "run_id",
    "workflowKey": "workflow_key",
    "workflowId": "workflow_id",
    "workflowName": "workflow_name",
    "status": "status",
    "startedAt": "started_at",
    "finishedAt": "finished_at",
    "input": "input",
    "output": "output",
    "errorMessage": "error_message",
    "userId": "user_id",
    "contentId": "content_id",
    "updatedAt": "updated_at",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _pick(payload: dict[str, Any], camel: str, snake: str | None = None) -> Any:
    if camel in payload:
        return payload[camel]
    if snake is not None:
        return payload.get(snake)
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_node_status(value: Any) -> NodeStatus:
    """Fold backend status spellings into the four node statuses."""
    if isinstance(value, NodeStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise MalformedEventError("status is required")
    status = _STATUS_ALIASES.get(value.strip().lower())
    if status is None:
        raise MalformedEventError(f"Unknown node status: {value}")
    return status


def parse_node_mode(value: Any) -> NodeMode:
    if isinstance(value, NodeMode):
        return value
    if isinstance(value, str):
        return _MODE_ALIASES.get(value.strip().lower(), NodeMode.PRODUCTION)
    return NodeMode.PRODUCTION


def normalize_node_update(
    payload: dict[str, Any], now: datetime | None = None
) -> NodeUpdate:
    """Map an execution-, workflow-, content- or node-scoped payload.

    Args:
        payload: Raw event data, camelCase or snake_case keys.
        now: Timestamp to use when the payload carries none.

    Returns:
        The canonical NodeUpdate.

    Raises:
        MalformedEventError: The payload lacks a usable execution id, node
            name or status, or a field has an invalid value.
    """
    if not isinstance(payload, dict):
        raise MalformedEventError("payload must be an object")

    execution_id = _optional_str(_pick(payload, "executionId", "execution_id"))
    if execution_id is None:
        raise MalformedEventError("executionId is required")
    node_name = _optional_str(_pick(payload, "nodeName", "node_name"))
    if node_name is None:
        raise MalformedEventError(f"nodeName is required (execution {execution_id})")

    workflow_id = _optional_str(_pick(payload, "workflowId", "workflow_id"))
    if workflow_id is None:
        logger.warning(
            f"Update for execution {execution_id} has no workflowId, processing anyway"
        )

    timestamp = _pick(payload, "timestamp")
    timestamp_inferred = not timestamp
    if timestamp_inferred:
        timestamp = now or utc_now()

    try:
        return NodeUpdate(
            execution_id=execution_id,
            workflow_id=workflow_id,
            workflow_name=_pick(payload, "workflowName", "workflow_name") or "",
            node_name=node_name,
            node_type=_pick(payload, "nodeType", "node_type") or "unknown",
            status=parse_node_status(_pick(payload, "status")),
            mode=parse_node_mode(_pick(payload, "mode")),
            timestamp=timestamp,
            timestamp_inferred=timestamp_inferred,
            finished_at=_pick(payload, "finishedAt", "finished_at") or None,
            content_id=_optional_str(_pick(payload, "contentId", "content_id")),
            result=_pick(payload, "result"),
        )
    except ValidationError as e:
        raise MalformedEventError(f"Invalid node update: {e}") from e


def node_update_from_node_run(node_run: NodeRun) -> NodeUpdate:
    """Convert a polled node row into the canonical update shape."""
    result = None
    if node_run.result_json:
        try:
            result = json.loads(node_run.result_json)
        except json.JSONDecodeError:
            result = node_run.result_json

    timestamp = node_run.updated_at or node_run.finished_at or node_run.created_at
    if timestamp is None:
        raise MalformedEventError(
            f"Node run {node_run.execution_id}/{node_run.node_name} has no timestamp"
        )

    return NodeUpdate(
        execution_id=node_run.execution_id,
        workflow_id=node_run.workflow_id,
        workflow_name=node_run.workflow_name or "",
        node_name=node_run.node_name,
        node_type=node_run.node_type or "unknown",
        status=parse_node_status(node_run.status),
        mode=parse_node_mode(node_run.mode),
        timestamp=timestamp,
        finished_at=node_run.finished_at,
        content_id=node_run.content_id,
        result=result,
    )


def normalize_run_patch(payload: dict[str, Any]) -> dict[str, Any]:
    """Return only the run fields present in ``payload``, validated.

    The result is keyed by model field name and is suitable for a
    non-destructive merge into an existing WorkflowRun.
    """
    if not isinstance(payload, dict):
        raise MalformedEventError("payload must be an object")

    present = {}
    for camel, snake in _RUN_FIELDS.items():
        if camel in payload:
            present[snake] = payload[camel]
        elif snake in payload:
            present[snake] = payload[snake]

    if present.get("id") is None and not _optional_str(present.get("run_id")):
        raise MalformedEventError("run update needs an id or runId")

    # Validate against the full model, then keep only what was sent.
    probe = dict(present)
    probe.setdefault("status", "QUEUED")
    try:
        run = WorkflowRun.model_validate(probe)
    except ValidationError as e:
        raise MalformedEventError(f"Invalid run update: {e}") from e
    return {name: getattr(run, name) for name in present}
