"""Connection and room models for the push channel."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class ConnectionStatus(str, Enum):
    """Lifecycle of the single push connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RoomKind(str, Enum):
    """Server-side scopes a connection can join."""

    EXECUTION = "execution"
    CONTENT = "content"
    WORKFLOW = "workflow"


class Room(BaseModel):
    """A server-side scope limiting which events are delivered."""

    model_config = ConfigDict(frozen=True)

    kind: RoomKind
    key: str

    @field_validator("key")
    @classmethod
    def key_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("room key is required")
        return v

    @property
    def channel(self) -> str:
        return f"{self.kind.value}:{self.key}"

    @classmethod
    def execution(cls, execution_id: str) -> "Room":
        return cls(kind=RoomKind.EXECUTION, key=str(execution_id))

    @classmethod
    def content(cls, content_id: str | int) -> "Room":
        return cls(kind=RoomKind.CONTENT, key=str(content_id))

    @classmethod
    def workflow(cls, workflow_id: str) -> "Room":
        return cls(kind=RoomKind.WORKFLOW, key=str(workflow_id))


class ConnectionState(BaseModel):
    """Snapshot of the connection as seen by consumers."""

    model_config = ConfigDict(frozen=True)

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    room: Room | None = None
    client_id: str | None = None
    error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED
