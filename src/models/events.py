"""Events delivered to consumers through the event bus."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class EventType(str, Enum):
    """Named events, both pushed by the backend and raised locally."""

    # Pushed by the backend
    CONNECTION_ACK = "connection"
    EXECUTION_UPDATE = "execution_update"
    WORKFLOW_UPDATE = "workflow_update"
    CONTENT_UPDATE = "content_update"
    RUN_UPDATE = "run_update"
    NODE_UPDATE = "node_update"

    # Raised by the connection manager
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTION_ERROR = "connection_error"


PUSHED_EVENT_TYPES = frozenset(
    {
        EventType.CONNECTION_ACK,
        EventType.EXECUTION_UPDATE,
        EventType.WORKFLOW_UPDATE,
        EventType.CONTENT_UPDATE,
        EventType.RUN_UPDATE,
        EventType.NODE_UPDATE,
    }
)

NODE_EVENT_TYPES = frozenset(
    {
        EventType.EXECUTION_UPDATE,
        EventType.WORKFLOW_UPDATE,
        EventType.CONTENT_UPDATE,
        EventType.NODE_UPDATE,
    }
)


class PushEvent(BaseModel):
    """A single event with its raw payload."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    channel: str | None = None
    data: dict[str, Any] = {}
