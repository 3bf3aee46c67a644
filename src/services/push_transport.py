"""Redis pub/sub transport for the push channel."""

import json
import uuid
from typing import Any

from redis import Redis
from redis.client import PubSub
from redis.exceptions import RedisError


class TransportError(Exception):
    """Raised when the push transport fails."""

    pass


def user_channel(user_id: int | str | None) -> str:
    return f"user:{user_id if user_id is not None else 'anonymous'}"


def encode_message(event: str, data: dict[str, Any]) -> str:
    """Serialize an event the way the backend publishes it."""
    if not event:
        raise ValueError("event is required")
    return json.dumps({"event": event, "data": data})


def publish_event(
    redis_client: Redis, channel: str, event: str, data: dict[str, Any]
) -> int:
    """Publish an event to a room channel. Returns the receiver count."""
    if not channel:
        raise ValueError("channel is required")
    return redis_client.publish(channel, encode_message(event, data))


class RedisPushTransport:
    """One pub/sub connection with per-user and per-room channels."""

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client
        self._pubsub: PubSub | None = None
        self._client_id: str | None = None

    @property
    def is_open(self) -> bool:
        return self._pubsub is not None

    @property
    def client_id(self) -> str | None:
        return self._client_id

    def open(self, user_id: int | None = None) -> str:
        """Open the connection and join the user's private channel."""
        if self._pubsub is not None:
            return self._client_id
        try:
            self._redis.ping()
            pubsub = self._redis.pubsub()
            pubsub.subscribe(user_channel(user_id))
        except RedisError as e:
            raise TransportError(f"Connection failed: {e}") from e
        self._pubsub = pubsub
        self._client_id = uuid.uuid4().hex[:12]
        return self._client_id

    def close(self) -> None:
        """Close the connection. Safe to call on a broken connection."""
        pubsub, self._pubsub = self._pubsub, None
        self._client_id = None
        if pubsub is None:
            return
        try:
            pubsub.close()
        except RedisError:
            # Already broken; nothing left to release.
            pass

    def subscribe(self, channel: str) -> None:
        if not channel:
            raise ValueError("channel is required")
        try:
            self._require_open().subscribe(channel)
        except RedisError as e:
            raise TransportError(f"Subscribe to {channel} failed: {e}") from e

    def unsubscribe(self, channel: str) -> None:
        if not channel:
            raise ValueError("channel is required")
        try:
            self._require_open().unsubscribe(channel)
        except RedisError as e:
            raise TransportError(f"Unsubscribe from {channel} failed: {e}") from e

    def check(self) -> None:
        """Raise TransportError if the server is no longer reachable."""
        self._require_open()
        try:
            self._redis.ping()
        except RedisError as e:
            raise TransportError(f"Connection lost: {e}") from e

    def read(self, timeout: float = 0.0) -> list[tuple[str, str]]:
        """Drain pending messages as ``(channel, raw_payload)`` pairs.

        Waits up to ``timeout`` seconds for the first message only.
        """
        pubsub = self._require_open()
        messages = []
        wait = timeout
        try:
            while True:
                message = pubsub.get_message(timeout=wait)
                if message is None:
                    break
                wait = 0.0
                # Subscribe confirmations are drained but not returned.
                if message.get("type") != "message":
                    continue
                messages.append(
                    (_as_text(message.get("channel")), _as_text(message.get("data")))
                )
        except RedisError as e:
            raise TransportError(f"Read failed: {e}") from e
        return messages

    def _require_open(self) -> PubSub:
        if self._pubsub is None:
            raise TransportError("Transport is not open")
        return self._pubsub


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return "" if value is None else str(value)
