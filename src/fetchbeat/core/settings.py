"""
Centralised settings for a fetchbeat process.

Every fleet member reads the same ``FETCHBEAT_*`` environment; only
``instance_id`` differs between processes and it defaults to a value that is
unique per host, pid and start.

Order of precedence (highest → lowest):
    1. Environment variables (``FETCHBEAT_LEASE_SECONDS``, etc.)
    2. ``.env`` file
    3. Defaults below

Example::

    from fetchbeat.core.settings import FetchbeatSettings

    settings = FetchbeatSettings(max_concurrency=5)
    settings.heartbeat_interval_seconds   # lease_seconds / 3
"""

from __future__ import annotations

import os
import socket
import uuid
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_instance_id() -> str:
    """Return ``<hostname>-<pid>-<random>``, unique per process start."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class FetchbeatSettings(BaseSettings):
    """Settings for the scheduler core, its admin API and CLI.

    Fields
    ──────
    database_path          : SQLite file shared by the fleet
    instance_id            : Lease holder identity of this process
    lease_resource         : Name of the singleton tick lease
    tick_interval_seconds  : Period of the tick loop
    lease_seconds          : Lease validity window; renewed every third of it
    max_concurrency        : Execution queue worker cap
    failure_threshold      : Consecutive failures that trip the breaker
    cool_down_seconds      : OPEN → HALF_OPEN delay
    save_max_retries       : Retry-on-conflict budget (attempts = retries + 1)
    admin_tokens           : Bearer token → operator identity
    """

    model_config = SettingsConfigDict(
        env_prefix="FETCHBEAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    database_path: str = Field(default="fetchbeat.db", description="SQLite database path")

    # ── Identity ─────────────────────────────────────────────────
    instance_id: str = Field(default_factory=default_instance_id)
    lease_resource: str = "scheduler-main"

    # ── Timing ───────────────────────────────────────────────────
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    lease_seconds: float = Field(default=300.0, gt=0)
    renew_timeout_seconds: float = Field(default=5.0, gt=0)
    due_grace_minutes: int = Field(default=1, ge=0, le=59)

    # ── Execution ────────────────────────────────────────────────
    max_concurrency: int = Field(default=3, ge=1)
    external_call_timeout_seconds: float = Field(default=60.0, gt=0)
    failure_threshold: int = Field(default=5, ge=1)
    cool_down_seconds: float = Field(default=1800.0, gt=0)

    # ── Persistence ──────────────────────────────────────────────
    save_max_retries: int = Field(default=5, ge=0)
    save_base_delay_seconds: float = Field(default=0.1, ge=0)
    history_limit: int = Field(default=50, ge=1)
    execution_retention_days: int = Field(default=7, ge=1)

    # ── Health ───────────────────────────────────────────────────
    health_window_hours: int = Field(default=24, ge=1)
    stale_running_minutes: int = Field(default=10, ge=1)
    backlog_threshold: int = Field(default=10, ge=1)

    # ── Collaborators ────────────────────────────────────────────
    collaborators: str | None = Field(
        default=None,
        description="Dotted path 'package.module:factory' returning a Collaborators bundle",
    )

    # ── API ──────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = "/api/v1"
    admin_tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token → operator identity (JSON object in env)",
    )
    debug: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _renew_fits_lease(self) -> FetchbeatSettings:
        if self.renew_timeout_seconds >= self.heartbeat_interval_seconds:
            raise ValueError("renew_timeout_seconds must be shorter than lease_seconds / 3")
        return self

    @property
    def heartbeat_interval_seconds(self) -> float:
        return self.lease_seconds / 3


@lru_cache(maxsize=1)
def get_settings() -> FetchbeatSettings:
    """Return the cached process settings."""
    return FetchbeatSettings()


__all__ = ["FetchbeatSettings", "default_instance_id", "get_settings"]
