"""
Application settings (Pydantic Settings).

.env is the source of truth; these defaults apply only when the env var is unset.
Sites and notification backends are registered in the JSON config file
(see core.registration); this module only holds engine tunables.
"""
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from vaxpoll.core.constants import DEFAULT_JITTER_RATIO, MAX_JITTER_RATIO

# .env in the working directory
_env_path = Path.cwd() / ".env"


class Settings(BaseSettings):
    log_level: str = "WARNING"

    # Timeouts
    fetch_timeout_seconds: float = Field(30.0, gt=0)
    delivery_timeout_seconds: float = Field(15.0, gt=0)
    shutdown_grace_seconds: float = Field(30.0, gt=0)

    # Delivery retry (bounded exponential backoff)
    retry_max_attempts: int = 4
    retry_base_delay_seconds: float = Field(2.0, gt=0)
    retry_max_delay_seconds: float = Field(60.0, gt=0)
    dispatch_max_workers: int = 8

    # Scheduling
    poll_jitter_ratio: float = DEFAULT_JITTER_RATIO
    min_poll_interval_seconds: float = Field(5.0, ge=0)

    # Also alert (normal priority) when slots disappear
    notify_on_unavailable: bool = False

    # Dedup state: unset keeps it in memory; e.g. sqlite:///vaxpoll-state.db to survive restarts
    state_database_url: str | None = None

    user_agent: str = "vaxpoll/0.1"

    class Config:
        env_file = _env_path
        extra = "ignore"

    @field_validator("log_level", mode="after")
    @classmethod
    def upper_level(cls, v: str) -> str:
        level = (v or "WARNING").strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("poll_jitter_ratio", mode="after")
    @classmethod
    def clamp_jitter(cls, v: float) -> float:
        return min(max(v, 0.0), MAX_JITTER_RATIO)

    @field_validator("retry_max_attempts", "dispatch_max_workers", mode="after")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(v, 1)

    @field_validator("state_database_url", mode="after")
    @classmethod
    def blank_is_none(cls, v: str | None) -> str | None:
        v = (v or "").strip()
        return v or None


@dataclass(frozen=True)
class EngineConfig:
    """Snapshot of engine tunables for passing into components (and tests)."""
    fetch_timeout_seconds: float = 30.0
    delivery_timeout_seconds: float = 15.0
    shutdown_grace_seconds: float = 30.0
    retry_max_attempts: int = 4
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 60.0
    dispatch_max_workers: int = 8
    poll_jitter_ratio: float = DEFAULT_JITTER_RATIO
    min_poll_interval_seconds: float = 5.0
    notify_on_unavailable: bool = False
    state_database_url: str | None = None
    user_agent: str = "vaxpoll/0.1"


def get_engine_config(settings: Settings | None = None) -> EngineConfig:
    s = settings or Settings()
    return EngineConfig(
        fetch_timeout_seconds=s.fetch_timeout_seconds,
        delivery_timeout_seconds=s.delivery_timeout_seconds,
        shutdown_grace_seconds=s.shutdown_grace_seconds,
        retry_max_attempts=s.retry_max_attempts,
        retry_base_delay_seconds=s.retry_base_delay_seconds,
        retry_max_delay_seconds=s.retry_max_delay_seconds,
        dispatch_max_workers=s.dispatch_max_workers,
        poll_jitter_ratio=s.poll_jitter_ratio,
        min_poll_interval_seconds=s.min_poll_interval_seconds,
        notify_on_unavailable=s.notify_on_unavailable,
        state_database_url=s.state_database_url,
        user_agent=s.user_agent,
    )
