"""Unit tests for RunListView."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import fakeredis
import pytest

from models.connection import ConnectionStatus, Room
from models.events import EventType, PushEvent
from models.execution import ExecutionStatus
from models.run import RunStatus, WorkflowRun
from services.connection_manager import ConnectionManager
from services.event_bus import EventBus
from services.live_view import CONNECTION_LOST
from services.push_transport import RedisPushTransport, publish_event
from services.run_list import RunListView
from services.workflow_api_client import WorkflowApiClient, WorkflowApiError

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def run(run_id, status, minutes=0, pk=None, **kwargs):
    return WorkflowRun(
        id=pk,
        run_id=run_id,
        status=status,
        started_at=T0 + timedelta(minutes=minutes),
        **kwargs,
    )


def node_event(execution_id, node_name, status, seconds=0):
    return {
        "executionId": execution_id,
        "workflowId": "w1",
        "nodeName": node_name,
        "status": status,
        "timestamp": (T0 + timedelta(seconds=seconds)).isoformat(),
    }


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(server):
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def connection(redis_client, bus, clock):
    return ConnectionManager(RedisPushTransport(redis_client), bus, user_id=5, clock=clock)


@pytest.fixture
def api():
    client = MagicMock(spec=WorkflowApiClient)
    client.fetch_all_workflow_runs.return_value = []
    return client


@pytest.fixture
def view(api, connection, bus, clock):
    return RunListView(api, connection, bus, poll_interval=30.0, clock=clock)


class TestRunListViewInit:
    """Tests for RunListView initialization."""

    def test_none_client_raises(self, connection, bus):
        with pytest.raises(ValueError, match="client is required"):
            RunListView(None, connection, bus)

    def test_initial_state(self, view):
        state = view.state
        assert state.runs == []
        assert not state.loading
        assert state.error is None
        assert state.connected_execution_id is None
        assert state.connection_status == ConnectionStatus.DISCONNECTED


class TestRefresh:
    """Tests for refresh."""

    def test_loads_runs(self, view, api):
        api.fetch_all_workflow_runs.return_value = [run("r1", "COMPLETED", pk=1)]
        assert view.refresh()
        assert [r.run_id for r in view.state.runs] == ["r1"]

    def test_listeners_see_loading(self, view, api):
        states = []
        view.add_listener(states.append)
        view.refresh()
        assert states[0].loading
        assert not states[-1].loading

    def test_silent_refresh_skips_loading(self, view):
        states = []
        view.add_listener(states.append)
        view.refresh(silent=True)
        assert not any(state.loading for state in states)

    def test_failure_keeps_last_runs(self, view, api):
        api.fetch_all_workflow_runs.return_value = [run("r1", "COMPLETED", pk=1)]
        view.refresh()
        api.fetch_all_workflow_runs.side_effect = WorkflowApiError("HTTP 500: down")
        assert not view.refresh()
        state = view.state
        assert state.error == "HTTP 500: down"
        assert [r.run_id for r in state.runs] == ["r1"]
        assert not state.loading

    def test_success_clears_error(self, view, api):
        api.fetch_all_workflow_runs.side_effect = WorkflowApiError("HTTP 500: down")
        view.refresh()
        api.fetch_all_workflow_runs.side_effect = None
        view.refresh()
        assert view.state.error is None

    def test_overlapping_refresh_ignored(self, view, api):
        nested = []

        def fetch():
            nested.append(view.refresh())
            return []

        api.fetch_all_workflow_runs.side_effect = fetch
        assert view.refresh()
        assert nested == [False]
        assert api.fetch_all_workflow_runs.call_count == 1


class TestAutoWatch:
    """The most recent non-terminal run is watched automatically."""

    def test_watches_most_recent_active_run(self, view, api, connection):
        api.fetch_all_workflow_runs.return_value = [
            run("r1", "RUNNING", 0, pk=1),
            run("r2", "QUEUED", 5, pk=2),
            run("r3", "COMPLETED", 10, pk=3),
        ]
        view.refresh()
        state = view.state
        assert state.connected_execution_id == "r2"
        assert state.connection_status == ConnectionStatus.CONNECTED
        assert connection.room == Room.execution("r2")
        assert [r.is_live for r in state.runs] == [False, True, False]

    def test_releases_room_when_watched_run_ends(self, view, api, connection, redis_client):
        api.fetch_all_workflow_runs.return_value = [run("r1", "RUNNING", 0, pk=1)]
        view.refresh()
        publish_event(redis_client, "user:5", "run_update", {"id": 1, "status": "COMPLETED"})
        connection.pump()
        state = view.state
        assert state.connected_execution_id is None
        assert connection.room is None
        assert state.runs[0].status == RunStatus.COMPLETED
        assert not state.runs[0].is_live

    def test_moves_to_next_active_run(self, view, api, connection, redis_client):
        api.fetch_all_workflow_runs.return_value = [
            run("r1", "RUNNING", 0, pk=1),
            run("r2", "RUNNING", 5, pk=2),
        ]
        view.refresh()
        publish_event(redis_client, "user:5", "run_update", {"runId": "r2", "status": "FAILED"})
        connection.pump()
        assert view.connected_execution_id == "r1"
        assert connection.room == Room.execution("r1")

    def test_explicit_disconnect_stops_auto_watch(self, view, api, connection):
        api.fetch_all_workflow_runs.return_value = [run("r1", "RUNNING", pk=1)]
        view.refresh()
        view.disconnect()
        view.refresh()
        assert view.connected_execution_id is None
        assert connection.room is None
        # The shared connection stays up.
        assert connection.is_connected

    def test_connect_to_execution_replaces_watch(self, view, connection):
        view.connect_to_execution("r9")
        assert view.connected_execution_id == "r9"
        assert connection.room == Room.execution("r9")

    def test_connect_to_empty_id_raises(self, view):
        with pytest.raises(ValueError, match="run_id is required"):
            view.connect_to_execution("")


class TestPushUpdates:
    """Tests for run and node events."""

    def test_run_update_inserts_unknown_run(self, view, bus):
        bus.publish(
            PushEvent(type=EventType.RUN_UPDATE, data={"runId": "r5", "status": "QUEUED"})
        )
        assert view.state.runs[0].run_id == "r5"

    def test_malformed_run_update_dropped(self, view, bus):
        bus.publish(PushEvent(type=EventType.RUN_UPDATE, data={"status": "RUNNING"}))
        assert view.state.runs == []

    def test_malformed_node_update_dropped(self, view, bus):
        bus.publish(PushEvent(type=EventType.EXECUTION_UPDATE, data={"nodeName": "x"}))
        assert view.execution("x") is None

    def test_node_update_for_other_run_leaves_output(self, view, api, bus):
        api.fetch_all_workflow_runs.return_value = [
            run("r1", "RUNNING", pk=1, output="{}"),
            run("r2", "COMPLETED", pk=2, output="{}"),
        ]
        view.refresh()
        bus.publish(
            PushEvent(type=EventType.NODE_UPDATE, data=node_event("r2", "fetch", "success"))
        )
        assert view.execution("r2").node("fetch") is not None
        outputs = {r.run_id: r.output for r in view.state.runs}
        assert outputs["r2"] == "{}"


class TestTriggerScenario:
    """Trigger, queue, run a node, complete."""

    def test_trigger_to_completed(self, view, api, connection, redis_client):
        api.trigger_workflow.return_value = WorkflowRun(id=11, run_id="r1")

        triggered = view.trigger_workflow(42, {"voice": "alto"})

        api.trigger_workflow.assert_called_once_with(42, {"voice": "alto"}, "ai-avatar")
        assert triggered.status == RunStatus.QUEUED
        assert triggered.is_live
        assert view.connected_execution_id == "r1"
        assert connection.room == Room.execution("r1")

        publish_event(
            redis_client, "execution:r1", "execution_update", node_event("r1", "fetch", "running")
        )
        connection.pump()
        assert view.execution("r1").status == ExecutionStatus.RUNNING
        progress = json.loads(view.state.runs[0].output)
        assert progress["currentNode"] == "fetch"
        assert progress["currentNodeStatus"] == "running"

        publish_event(
            redis_client,
            "execution:r1",
            "execution_update",
            node_event("r1", "fetch", "success", seconds=5),
        )
        connection.pump()
        execution = view.execution("r1")
        assert execution.status == ExecutionStatus.COMPLETED
        assert len(execution.nodes) == 1

    def test_trigger_failure_sets_error(self, view, api):
        api.trigger_workflow.side_effect = WorkflowApiError("HTTP 500: boom")
        assert view.trigger_workflow(42) is None
        assert view.state.error == "Failed to trigger workflow: HTTP 500: boom"
        assert view.connected_execution_id is None


class TestPushDropScenario:
    """Push channel drops, polling takes over and reports the failure."""

    def test_poll_reports_failed_run(self, view, api, connection, server, clock):
        api.fetch_all_workflow_runs.return_value = [run("r1", "RUNNING", pk=1)]
        view.refresh()
        assert connection.is_connected

        server.connected = False
        clock.advance(1.0)
        connection.sample()
        state = view.state
        assert state.connection_status == ConnectionStatus.DISCONNECTED
        assert state.error == CONNECTION_LOST
        # Last known runs stay visible.
        assert state.runs[0].status == RunStatus.RUNNING

        api.fetch_all_workflow_runs.return_value = [run("r1", "FAILED", pk=1)]
        clock.advance(28.0)
        view.tick()
        assert api.fetch_all_workflow_runs.call_count == 1

        clock.advance(1.0)
        view.tick()
        assert api.fetch_all_workflow_runs.call_count == 2
        state = view.state
        assert state.runs[0].status == RunStatus.FAILED
        assert state.connected_execution_id is None
        assert state.error == CONNECTION_LOST

    def test_connected_view_does_not_poll(self, view, api, clock):
        api.fetch_all_workflow_runs.return_value = [run("r1", "RUNNING", pk=1)]
        view.refresh()
        clock.advance(60.0)
        view.tick()
        assert api.fetch_all_workflow_runs.call_count == 1


class TestClose:
    """Tests for close."""

    def test_close_detaches(self, view, api, bus, connection):
        api.fetch_all_workflow_runs.return_value = [run("r1", "RUNNING", pk=1)]
        view.refresh()
        view.close()
        assert view.closed
        assert bus.handler_count(EventType.RUN_UPDATE) == 0
        assert connection.room is None
        assert not view.poller.enabled
