"""In-memory reconciliation of node updates and run records.

Push events and poll results both end up here as canonical records, so the
two paths converge on one state. Stores replace their frozen records rather
than mutating them, which keeps every snapshot handed to a consumer stable.
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from models.execution import Execution, ExecutionStatus, NodeStatus, NodeUpdate
from models.run import RunStatus, WorkflowRun
from services.normalizer import utc_now

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_LOCAL_FIELDS = frozenset({"is_live", "last_updated"})


def derive_execution_status(nodes: Iterable[NodeUpdate]) -> ExecutionStatus:
    """Aggregate node statuses: failed > running > completed.

    A node set with no running node counts as completed, including one
    where every node is still waiting.
    """
    statuses = {node.status for node in nodes}
    if NodeStatus.FAILED in statuses:
        return ExecutionStatus.FAILED
    if NodeStatus.RUNNING in statuses:
        return ExecutionStatus.RUNNING
    return ExecutionStatus.COMPLETED


class ExecutionStore:
    """Executions keyed by execution id, with a selected ("current") one."""

    def __init__(self, max_executions: int = 50):
        if max_executions <= 0:
            raise ValueError("max_executions must be positive")
        self._max_executions = max_executions
        self._executions: dict[str, Execution] = {}
        self._selected_id: str | None = None

    def __len__(self) -> int:
        return len(self._executions)

    @property
    def executions(self) -> list[Execution]:
        """All executions, most recently created first."""
        return list(reversed(self._executions.values()))

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    @property
    def current(self) -> Execution | None:
        if self._selected_id is None:
            return None
        return self._executions.get(self._selected_id)

    def get(self, execution_id: str) -> Execution | None:
        return self._executions.get(execution_id)

    def select(self, execution_id: str | None) -> Execution | None:
        """Spotlight an execution; it need not have been observed yet."""
        self._selected_id = execution_id
        return self.current

    def apply(self, update: NodeUpdate) -> bool:
        """Merge one canonical update. Returns True if state changed."""
        if update is None:
            raise ValueError("update is required")

        existing = self._executions.get(update.execution_id)
        if existing is None:
            self._executions[update.execution_id] = Execution(
                execution_id=update.execution_id,
                workflow_id=update.workflow_id,
                workflow_name=update.workflow_name,
                content_id=update.content_id,
                status=(
                    ExecutionStatus.FAILED
                    if update.status == NodeStatus.FAILED
                    else ExecutionStatus.RUNNING
                ),
                started_at=update.timestamp,
                last_updated=update.timestamp,
                nodes=[update],
            )
            self._evict()
            return True

        stored = existing.node(update.node_name)
        if stored is not None:
            if stored == update:
                return False
            # A locally stamped time cannot outrank the producer's clock.
            if not stored.timestamp_inferred and update.timestamp < stored.timestamp:
                logger.debug(
                    f"Ignoring stale update for {update.execution_id}/{update.node_name}"
                )
                return False
            nodes = [
                update if node.node_name == update.node_name else node
                for node in existing.nodes
            ]
        else:
            nodes = [*existing.nodes, update]

        # Stable sort: equal timestamps keep their previous relative order.
        nodes.sort(key=lambda node: node.timestamp)

        self._executions[update.execution_id] = existing.model_copy(
            update={
                "nodes": nodes,
                "status": derive_execution_status(nodes),
                "started_at": min(existing.started_at, update.timestamp),
                "last_updated": max(existing.last_updated, update.timestamp),
                "workflow_id": existing.workflow_id or update.workflow_id,
                "workflow_name": existing.workflow_name or update.workflow_name,
                "content_id": existing.content_id or update.content_id,
            }
        )
        return True

    def apply_many(self, updates: Iterable[NodeUpdate]) -> int:
        """Merge several updates in order. Returns how many changed state."""
        return sum(1 for update in updates if self.apply(update))

    def latest_for_content(self, content_id: str) -> Execution | None:
        """Most recently updated execution touching ``content_id``."""
        matches = self._for_content(content_id)
        if not matches:
            return None
        return max(matches, key=lambda execution: execution.last_updated)

    def nodes_for_content(self, content_id: str) -> list[NodeUpdate]:
        """Every node of every execution touching ``content_id``, newest first."""
        nodes = [
            node
            for execution in self._for_content(content_id)
            for node in execution.nodes
        ]
        return sorted(nodes, key=lambda node: node.timestamp, reverse=True)

    def _for_content(self, content_id: str) -> list[Execution]:
        return [
            execution
            for execution in self._executions.values()
            if execution.content_id == content_id
            or any(node.content_id == content_id for node in execution.nodes)
        ]

    def clear(self) -> None:
        self._executions.clear()
        self._selected_id = None

    def _evict(self) -> None:
        while len(self._executions) > self._max_executions:
            victim = next(
                (key for key in self._executions if key != self._selected_id), None
            )
            if victim is None:
                return
            del self._executions[victim]
            logger.debug(f"Evicted execution {victim} from history")


class RunStore:
    """Run records unique by id, falling back to run_id."""

    def __init__(self):
        self._runs: list[WorkflowRun] = []
        self._live_run_id: str | None = None

    def __len__(self) -> int:
        return len(self._runs)

    @property
    def runs(self) -> list[WorkflowRun]:
        return list(self._runs)

    @property
    def live_run_id(self) -> str | None:
        return self._live_run_id

    def get(self, run_id: str) -> WorkflowRun | None:
        for run in self._runs:
            if run.run_id == run_id:
                return run
        return None

    def has_active(self) -> bool:
        return any(run.is_active for run in self._runs)

    def most_recent_active(self) -> WorkflowRun | None:
        """The latest-started non-terminal run that can be watched."""
        candidates = [run for run in self._runs if run.is_active and run.run_id]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda run: run.started_at or _EPOCH,
        )

    def upsert(self, patch: dict[str, Any], now: datetime | None = None) -> bool:
        """Merge a partial run record. Returns True if state changed.

        Only the fields present in ``patch`` overwrite the stored run.
        """
        if not patch:
            raise ValueError("patch is required")
        now = now or utc_now()

        index = self._find(patch.get("id"), patch.get("run_id"))
        if index is None:
            values = dict(patch)
            values.setdefault("status", RunStatus.QUEUED)
            run = WorkflowRun.model_validate(values)
            self._runs.insert(0, self._with_live(run, now))
            return True

        existing = self._runs[index]
        if all(getattr(existing, name) == value for name, value in patch.items()):
            return False

        merged = existing.model_copy(update=patch)
        self._runs[index] = self._with_live(merged, now)
        return True

    def put(self, run: WorkflowRun, now: datetime | None = None) -> bool:
        """Upsert a complete backend record, e.g. a trigger response."""
        patch = {
            name: getattr(run, name)
            for name in run.model_fields_set
            if name not in _LOCAL_FIELDS
        }
        patch.setdefault("status", run.status)
        return self.upsert(patch, now)

    def sync(self, runs: Iterable[WorkflowRun], now: datetime | None = None) -> bool:
        """Replace the list with an authoritative fetch. Returns True if changed."""
        now = now or utc_now()
        fresh = []
        for run in runs:
            index = self._find(run.id, run.run_id)
            previous = self._runs[index] if index is not None else None
            if previous is not None and _same_run(previous, run):
                fresh.append(previous)
            else:
                fresh.append(self._with_live(run, now))

        changed = len(fresh) != len(self._runs) or not all(
            _same_run(a, b) for a, b in zip(fresh, self._runs)
        )
        self._runs = fresh
        return changed

    def apply_node_progress(
        self, run_id: str, update: NodeUpdate, now: datetime | None = None
    ) -> bool:
        """Record the node currently executing in the run's output blob."""
        now = now or utc_now()
        index = self._find(None, run_id)
        if index is None:
            return False

        run = self._runs[index]
        output = run.output
        try:
            data = json.loads(output) if output else {}
            if not isinstance(data, dict):
                raise ValueError("output is not an object")
        except ValueError as e:
            logger.warning(f"Cannot record node progress in run {run_id} output: {e}")
        else:
            data["currentNode"] = update.node_name
            data["currentNodeStatus"] = update.status.value
            data["lastNodeUpdate"] = update.timestamp.isoformat()
            output = json.dumps(data)

        self._runs[index] = self._with_live(run.model_copy(update={"output": output}), now)
        return True

    def mark_live(self, run_id: str | None) -> None:
        """Flag the run receiving push updates; None clears every flag."""
        self._live_run_id = run_id
        self._runs = [
            run.model_copy(update={"is_live": self._is_live(run)}) for run in self._runs
        ]

    def clear(self) -> None:
        self._runs = []
        self._live_run_id = None

    def _find(self, run_pk: int | None, run_id: str | None) -> int | None:
        if run_pk is not None:
            for index, run in enumerate(self._runs):
                if run.id == run_pk:
                    return index
        if run_id:
            for index, run in enumerate(self._runs):
                if run.run_id == run_id:
                    return index
        return None

    def _is_live(self, run: WorkflowRun) -> bool:
        return (
            self._live_run_id is not None
            and run.run_id == self._live_run_id
            and run.is_active
        )

    def _with_live(self, run: WorkflowRun, now: datetime) -> WorkflowRun:
        return run.model_copy(update={"is_live": self._is_live(run), "last_updated": now})


def _same_run(a: WorkflowRun, b: WorkflowRun) -> bool:
    return a.model_dump(exclude=_LOCAL_FIELDS) == b.model_dump(exclude=_LOCAL_FIELDS)
