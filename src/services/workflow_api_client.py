"""HTTP client for the workflow run and content status endpoints."""

from typing import Any

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from models.run import ContentWorkflowStatus, NodeRun, WorkflowRun

_RUN_LIST = TypeAdapter(list[WorkflowRun])
_NODE_RUN_LIST = TypeAdapter(list[NodeRun])


class WorkflowApiError(Exception):
    """Raised when a workflow endpoint call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class WorkflowApiClient:
    """Request/response access to workflow runs, node runs and triggers."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        token: str | None = None,
        user_id: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        if user_id is not None:
            self._headers["X-User-Id"] = str(user_id)

    def fetch_all_workflow_runs(self) -> list[WorkflowRun]:
        """GET /n8n/runs"""
        return self._get("/n8n/runs", _RUN_LIST)

    def fetch_workflow_run(self, run_pk: int) -> WorkflowRun:
        """GET /n8n/runs/{id}"""
        return self._get(f"/n8n/runs/{run_pk}", WorkflowRun)

    def fetch_workflow_run_by_content_id(self, content_id: str | int) -> WorkflowRun:
        """GET /n8n/content/{content_id}/workflow-run, with its node runs."""
        return self._get(f"/n8n/content/{_required(content_id)}/workflow-run", WorkflowRun)

    def fetch_workflow_runs_by_content_id(
        self, content_id: str | int
    ) -> list[WorkflowRun]:
        """GET /n8n/content/{content_id}/workflow-runs"""
        return self._get(f"/n8n/content/{_required(content_id)}/workflow-runs", _RUN_LIST)

    def fetch_node_runs_by_content_id(
        self, content_id: str | int, status: str | None = None
    ) -> list[NodeRun]:
        """GET /n8n/content/{content_id}/node-runs, optionally filtered by status."""
        params = {"status": status} if status else None
        return self._get(
            f"/n8n/content/{_required(content_id)}/node-runs",
            _NODE_RUN_LIST,
            params=params,
        )

    def fetch_latest_node_run_by_content_id(self, content_id: str | int) -> NodeRun:
        """GET /n8n/content/{content_id}/latest-node-run"""
        return self._get(f"/n8n/content/{_required(content_id)}/latest-node-run", NodeRun)

    def fetch_content_workflow_status(
        self, content_id: str | int
    ) -> ContentWorkflowStatus:
        """GET /n8n/content/{content_id}/status"""
        return self._get(
            f"/n8n/content/{_required(content_id)}/status", ContentWorkflowStatus
        )

    def trigger_workflow(
        self,
        content_id: str | int,
        payload: dict[str, Any] | None = None,
        workflow_key: str = "ai-avatar",
    ) -> WorkflowRun:
        """POST /n8n/workflows/{workflow_key}/trigger/{content_id}"""
        if not workflow_key or not workflow_key.strip():
            raise ValueError("workflow_key is required")
        run = self._request(
            "POST",
            f"/n8n/workflows/{workflow_key}/trigger/{_required(content_id)}",
            WorkflowRun,
            json=payload or {},
        )
        if not run.run_id:
            raise WorkflowApiError("Trigger response has no runId")
        return run

    def _get(self, path: str, schema: Any, params: dict | None = None) -> Any:
        return self._request("GET", path, schema, params=params)

    def _request(
        self,
        method: str,
        path: str,
        schema: type[BaseModel] | TypeAdapter,
        params: dict | None = None,
        json: dict | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"

        try:
            with httpx.Client(
                timeout=self._timeout, headers=self._headers, transport=self._transport
            ) as client:
                response = client.request(method, url, params=params, json=json)
        except httpx.ConnectError as e:
            raise WorkflowApiError(f"Connection failed: {e}") from e
        except httpx.TimeoutException as e:
            raise WorkflowApiError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise WorkflowApiError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise WorkflowApiError(
                f"HTTP {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise WorkflowApiError(f"Invalid JSON from {path}: {e}") from e

        try:
            if isinstance(schema, TypeAdapter):
                return schema.validate_python(data)
            return schema.model_validate(data)
        except ValidationError as e:
            raise WorkflowApiError(f"Invalid response from {path}: {e}") from e


def _required(content_id: str | int) -> str:
    text = "" if content_id is None else str(content_id).strip()
    if not text:
        raise ValueError("content_id is required")
    return text


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)
