"""Unit tests for EventBus."""

from unittest.mock import MagicMock

import pytest

from models.events import EventType, PushEvent
from services.event_bus import EventBus


@pytest.fixture
def bus():
    return EventBus()


class TestSubscribe:
    """Tests for subscribe and cancel."""

    def test_handler_receives_event(self, bus):
        handler = MagicMock()
        bus.subscribe(EventType.RUN_UPDATE, handler)
        event = PushEvent(type=EventType.RUN_UPDATE, data={"runId": "r1"})
        assert bus.publish(event) == 1
        handler.assert_called_once_with(event)

    def test_only_matching_type(self, bus):
        handler = MagicMock()
        bus.subscribe(EventType.RUN_UPDATE, handler)
        assert bus.publish(PushEvent(type=EventType.NODE_UPDATE)) == 0
        handler.assert_not_called()

    def test_cancel_detaches(self, bus):
        handler = MagicMock()
        subscription = bus.subscribe(EventType.CONNECTED, handler)
        subscription.cancel()
        subscription.cancel()
        bus.publish(PushEvent(type=EventType.CONNECTED))
        handler.assert_not_called()
        assert not subscription.active
        assert bus.handler_count(EventType.CONNECTED) == 0

    def test_subscribe_many(self, bus):
        handler = MagicMock()
        subscriptions = bus.subscribe_many(
            {EventType.EXECUTION_UPDATE, EventType.CONTENT_UPDATE}, handler
        )
        assert len(subscriptions) == 2
        bus.publish(PushEvent(type=EventType.EXECUTION_UPDATE))
        bus.publish(PushEvent(type=EventType.CONTENT_UPDATE))
        assert handler.call_count == 2

    def test_none_handler_raises(self, bus):
        with pytest.raises(ValueError, match="handler is required"):
            bus.subscribe(EventType.CONNECTED, None)


class TestPublish:
    """Tests for publish."""

    def test_handlers_run_in_registration_order(self, bus):
        calls = []
        bus.subscribe(EventType.CONNECTED, lambda e: calls.append("first"))
        bus.subscribe(EventType.CONNECTED, lambda e: calls.append("second"))
        bus.publish(PushEvent(type=EventType.CONNECTED))
        assert calls == ["first", "second"]

    def test_failing_handler_does_not_stop_others(self, bus, caplog):
        """Handler exceptions are logged and contained."""
        after = MagicMock()
        bus.subscribe(EventType.CONNECTED, MagicMock(side_effect=RuntimeError("boom")))
        bus.subscribe(EventType.CONNECTED, after)
        assert bus.publish(PushEvent(type=EventType.CONNECTED)) == 2
        after.assert_called_once()
        assert "Handler for connected failed" in caplog.text

    def test_handler_cancelled_during_dispatch_is_skipped(self, bus):
        second = MagicMock()
        holder = {}

        def first(event):
            holder["second"].cancel()

        bus.subscribe(EventType.CONNECTED, first)
        holder["second"] = bus.subscribe(EventType.CONNECTED, second)
        assert bus.publish(PushEvent(type=EventType.CONNECTED)) == 1
        second.assert_not_called()
