"""Runtime settings for the synchronizer."""

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, field_validator


class SyncSettings(BaseModel):
    """Settings shared by the connection, poller and facades."""

    model_config = ConfigDict(frozen=True)

    redis_url: str = "redis://localhost:6379"
    api_url: str = "http://localhost:8080/api"
    api_token: str | None = None
    user_id: int | None = None
    poll_interval: float = 30.0
    safety_net_factor: float = 3.0
    sample_interval: float = 1.0
    http_timeout: float = 30.0
    max_executions: int = 50
    status_debounce: float = 0.5
    log_level: str = "info"

    @field_validator("poll_interval", "sample_interval", "http_timeout")
    @classmethod
    def positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @field_validator("safety_net_factor")
    @classmethod
    def factor_at_least_one(cls, v: float) -> float:
        if v < 1:
            raise ValueError("safety_net_factor must be at least 1")
        return v

    @field_validator("max_executions")
    @classmethod
    def max_executions_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_executions must be positive")
        return v

    @field_validator("status_debounce")
    @classmethod
    def debounce_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("status_debounce must be non-negative")
        return v

    @property
    def safety_net_window(self) -> float:
        return self.poll_interval * self.safety_net_factor

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SyncSettings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()
        user_id = env.get("SYNC_USER_ID")
        return cls(
            redis_url=env.get("REDIS_URL", defaults.redis_url),
            api_url=env.get("SYNC_API_URL", defaults.api_url),
            api_token=env.get("SYNC_API_TOKEN") or None,
            user_id=int(user_id) if user_id else None,
            poll_interval=float(env.get("SYNC_POLL_INTERVAL", defaults.poll_interval)),
            sample_interval=float(
                env.get("SYNC_SAMPLE_INTERVAL", defaults.sample_interval)
            ),
            http_timeout=float(env.get("SYNC_HTTP_TIMEOUT", defaults.http_timeout)),
            max_executions=int(env.get("SYNC_MAX_EXECUTIONS", defaults.max_executions)),
            status_debounce=float(
                env.get("SYNC_STATUS_DEBOUNCE", defaults.status_debounce)
            ),
            log_level=env.get("LOG_LEVEL", defaults.log_level).lower(),
        )
