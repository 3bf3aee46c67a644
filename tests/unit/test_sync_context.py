"""Unit tests for SyncContext."""

from unittest.mock import MagicMock

import fakeredis
import pytest

from models.connection import ConnectionStatus, Room
from models.run import ContentWorkflowStatus, WorkflowRun
from services.content_workflow import ContentWorkflowView
from services.execution_timeline import ExecutionTimelineView
from services.push_transport import publish_event
from services.run_list import RunListView
from services.settings import SyncSettings
from services.sync_context import SyncContext
from services.workflow_api_client import WorkflowApiClient, WorkflowApiError


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(server):
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def api():
    client = MagicMock(spec=WorkflowApiClient)
    client.fetch_all_workflow_runs.return_value = []
    client.fetch_node_runs_by_content_id.return_value = []
    client.fetch_workflow_runs_by_content_id.return_value = []
    client.fetch_content_workflow_status.return_value = ContentWorkflowStatus(
        content_id="42", overall_status="NO_DATA"
    )
    client.fetch_latest_node_run_by_content_id.side_effect = WorkflowApiError(
        "HTTP 404: none", status_code=404
    )
    return client


@pytest.fixture
def settings():
    return SyncSettings(user_id=5, poll_interval=30.0, sample_interval=1.0)


@pytest.fixture
def context(settings, redis_client, api, clock):
    return SyncContext(settings, redis_client, client=api, clock=clock, sleep=MagicMock())


class TestSyncContextInit:
    """Tests for SyncContext initialization."""

    def test_none_settings_raises(self, redis_client):
        with pytest.raises(ValueError, match="settings is required"):
            SyncContext(None, redis_client)

    def test_none_redis_raises(self, settings):
        with pytest.raises(ValueError, match="redis_client is required"):
            SyncContext(settings, None)

    def test_builds_api_client_from_settings(self, settings, redis_client):
        context = SyncContext(settings, redis_client)
        assert isinstance(context.client, WorkflowApiClient)


class TestFacadeFactories:
    """Facades share the context's connection."""

    def test_run_list_refreshes(self, context, api):
        view = context.run_list()
        assert isinstance(view, RunListView)
        api.fetch_all_workflow_runs.assert_called_once()
        assert context.views == [view]

    def test_content_workflow_refreshes_all(self, context, api):
        view = context.content_workflow(42)
        assert isinstance(view, ContentWorkflowView)
        api.fetch_content_workflow_status.assert_called_once_with("42")

    def test_timeline_for_execution(self, context):
        view = context.execution_timeline(execution_id="e1")
        assert isinstance(view, ExecutionTimelineView)
        assert context.connection.room == Room.execution("e1")

    def test_timeline_rejects_both_targets(self, context):
        with pytest.raises(ValueError, match="not both"):
            context.execution_timeline(execution_id="e1", content_id=42)

    def test_closed_views_dropped(self, context):
        view = context.run_list(refresh=False)
        view.close()
        assert context.views == []


class TestRunOnce:
    """Tests for one loop turn."""

    def test_delivers_events_to_facades(self, context, redis_client):
        view = context.execution_timeline(execution_id="e1")
        publish_event(
            redis_client,
            "execution:e1",
            "execution_update",
            {"executionId": "e1", "workflowId": "w1", "nodeName": "a", "status": "running"},
        )
        assert context.run_once(timeout=0) == 1
        assert view.current_execution.node("a") is not None

    def test_ticks_facades(self, context, api, clock):
        context.run_list()
        clock.advance(90.0)
        context.run_once(timeout=0)
        assert api.fetch_all_workflow_runs.call_count == 2

    def test_reconnects_with_backoff(self, context, server, clock):
        context.execution_timeline(execution_id="e1", refresh=False)
        server.connected = False
        clock.advance(1.0)
        context.run_once(timeout=0)
        assert context.connection.status == ConnectionStatus.DISCONNECTED
        assert context.connection.failures == 2

        # Second failure: next attempt waits two sample intervals.
        assert context.reconnect_delay() == 2.0
        clock.advance(1.0)
        context.run_once(timeout=0)
        assert context.connection.failures == 2

        server.connected = True
        clock.advance(1.0)
        context.run_once(timeout=0)
        assert context.connection.is_connected
        assert context.connection.room == Room.execution("e1")

    def test_no_reconnect_without_room(self, context, server, clock):
        context.connection.connect()
        server.connected = False
        clock.advance(1.0)
        context.run_once(timeout=0)
        assert context.connection.failures == 1

    def test_reconnect_delay_capped(self, context):
        context.connection._failures = 20
        assert context.reconnect_delay() == 30.0


class TestRun:
    """Tests for the run loop."""

    def test_run_until_stopped(self, settings, redis_client, api, clock):
        sleep = MagicMock()
        context = SyncContext(settings, redis_client, client=api, clock=clock, sleep=sleep)
        view = context.run_list(refresh=False)
        sleep.side_effect = lambda seconds: context.stop()

        context.run(timeout=0.1)

        sleep.assert_called_once_with(0.1)
        assert not context.running
        assert view.closed
        assert context.connection.status == ConnectionStatus.DISCONNECTED

    def test_loop_survives_errors(self, settings, redis_client, api, clock):
        sleep = MagicMock()
        context = SyncContext(settings, redis_client, client=api, clock=clock, sleep=sleep)
        context.run_once = MagicMock(side_effect=[RuntimeError("boom"), 0])
        sleep.side_effect = lambda seconds: context.stop() if sleep.call_count > 1 else None

        context.run(timeout=0.1)

        assert context.run_once.call_count == 2

    def test_reconnect_triggers_refresh(self, context, api, server, clock):
        api.fetch_all_workflow_runs.return_value = [WorkflowRun(id=1, run_id="r1", status="RUNNING")]
        context.run_list()
        server.connected = False
        clock.advance(1.0)
        context.run_once(timeout=0)
        calls = api.fetch_all_workflow_runs.call_count

        server.connected = True
        clock.advance(2.0)
        context.run_once(timeout=0)
        assert context.connection.is_connected
        assert api.fetch_all_workflow_runs.call_count == calls + 1
