"""Connection manager for the push channel.

Owns the single push connection of a SyncContext, reflects its status
truthfully, scopes delivery to one room at a time and publishes every
inbound message on the event bus. Failures never raise out of this class:
they are reported as CONNECTION_ERROR events and the caller decides whether
to call connect() again.
"""

import json
import logging
import time
from collections.abc import Callable

from models.connection import ConnectionState, ConnectionStatus, Room
from models.events import PUSHED_EVENT_TYPES, EventType, PushEvent
from services.event_bus import EventBus
from services.push_transport import RedisPushTransport, TransportError

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Lifecycle and room subscription of one push connection."""

    def __init__(
        self,
        transport: RedisPushTransport,
        bus: EventBus,
        user_id: int | None = None,
        sample_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if transport is None:
            raise ValueError("transport is required")
        if bus is None:
            raise ValueError("bus is required")
        if sample_interval <= 0:
            raise ValueError("sample_interval must be positive")

        self._transport = transport
        self._bus = bus
        self._user_id = user_id
        self._sample_interval = sample_interval
        self._clock = clock

        self._status = ConnectionStatus.DISCONNECTED
        self._room: Room | None = None
        self._joined: Room | None = None
        self._error: str | None = None
        self._failures = 0
        self._last_sample: float | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    @property
    def room(self) -> Room | None:
        """The room requested by the consumer, joined or still pending."""
        return self._room

    @property
    def failures(self) -> int:
        """Consecutive connection failures since the last success."""
        return self._failures

    @property
    def state(self) -> ConnectionState:
        return ConnectionState(
            status=self._status,
            room=self._room,
            client_id=self._transport.client_id if self.is_connected else None,
            error=self._error,
        )

    def connect(self) -> None:
        """Open the connection unless already connecting or connected."""
        if self._status != ConnectionStatus.DISCONNECTED:
            return

        self._status = ConnectionStatus.CONNECTING
        try:
            client_id = self._transport.open(self._user_id)
        except TransportError as e:
            self._fail(str(e))
            return

        self._status = ConnectionStatus.CONNECTED
        self._failures = 0
        self._error = None
        self._last_sample = self._clock()
        logger.info(f"Push channel connected (client {client_id})")
        self._bus.publish(PushEvent(type=EventType.CONNECTED))

        if self._room is not None:
            self._join(self._room)

    def disconnect(self) -> None:
        """Close the connection and forget the requested room."""
        was_open = self._status != ConnectionStatus.DISCONNECTED
        self._transport.close()
        self._status = ConnectionStatus.DISCONNECTED
        self._room = None
        self._joined = None
        self._error = None
        if was_open:
            logger.info("Push channel disconnected")
            self._bus.publish(PushEvent(type=EventType.DISCONNECTED))

    def join_execution_room(self, execution_id: str) -> None:
        self.join(Room.execution(execution_id))

    def join_content_room(self, content_id: str | int) -> None:
        self.join(Room.content(content_id))

    def join_workflow_room(self, workflow_id: str) -> None:
        self.join(Room.workflow(workflow_id))

    def join(self, room: Room) -> None:
        """Scope delivery to ``room``, replacing any previous room.

        When not connected the request is remembered and replayed on connect.
        """
        if room is None:
            raise ValueError("room is required")
        self._room = room
        if self.is_connected:
            self._join(room)
        else:
            logger.debug(f"Room {room.channel} pending until connected")

    def leave_room(self) -> None:
        """Release the current room, if any."""
        self._room = None
        if self._joined is None:
            return
        channel = self._joined.channel
        self._joined = None
        if self.is_connected:
            try:
                self._transport.unsubscribe(channel)
            except TransportError as e:
                self._fail(str(e))
                return
            logger.info(f"Left room {channel}")

    def sample(self) -> ConnectionState:
        """Health-check the connection at most once per sample interval."""
        now = self._clock()
        if self.is_connected and (
            self._last_sample is None
            or now - self._last_sample >= self._sample_interval
        ):
            self._last_sample = now
            try:
                self._transport.check()
            except TransportError as e:
                self._fail(str(e))
        return self.state

    def pump(self, timeout: float = 0.0) -> int:
        """Publish pending inbound messages on the bus. Returns the count."""
        if not self.is_connected:
            return 0
        try:
            messages = self._transport.read(timeout)
        except TransportError as e:
            self._fail(str(e))
            return 0

        delivered = 0
        for channel, raw in messages:
            event = self._decode(channel, raw)
            if event is None:
                continue
            self._bus.publish(event)
            delivered += 1
        return delivered

    def _join(self, room: Room) -> None:
        if self._joined == room:
            return
        try:
            if self._joined is not None:
                self._transport.unsubscribe(self._joined.channel)
                logger.info(f"Left room {self._joined.channel}")
            self._joined = None
            self._transport.subscribe(room.channel)
        except TransportError as e:
            self._fail(str(e))
            return
        self._joined = room
        logger.info(f"Joined room {room.channel}")

    def _fail(self, message: str) -> None:
        # Keep the requested room so a later connect() re-joins it.
        self._transport.close()
        self._status = ConnectionStatus.DISCONNECTED
        self._joined = None
        self._error = message
        self._failures += 1
        logger.warning(f"Push channel error: {message}")
        self._bus.publish(
            PushEvent(
                type=EventType.CONNECTION_ERROR,
                data={"message": message, "failures": self._failures},
            )
        )

    def _decode(self, channel: str, raw: str) -> PushEvent | None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping undecodable message on {channel}")
            return None
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object message on {channel}")
            return None

        name = message.get("event")
        data = message.get("data")
        try:
            event_type = EventType(name)
        except ValueError:
            event_type = None
        if event_type not in PUSHED_EVENT_TYPES:
            logger.warning(f"Dropping unknown event {name!r} on {channel}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Dropping {name} without object payload on {channel}")
            return None

        if event_type == EventType.CONNECTION_ACK:
            logger.info(f"Push channel acknowledged on {channel}")
        return PushEvent(type=event_type, channel=channel, data=data)
