"""
FastAPI dependency injection: settings, the scheduler runtime, the acting
operator and pagination.

Usage in routers::

    from fetchbeat.api.deps import Actor, Pagination, Runtime

    @router.get("/executions")
    def list_executions(runtime: Runtime, pagination: Pagination):
        ...

Tags:
    fetchbeat, api, dependency-injection
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query, Request

from fetchbeat.core.errors import AuthError, ConfigError
from fetchbeat.core.settings import FetchbeatSettings
from fetchbeat.core.settings import get_settings as _load_settings
from fetchbeat.runtime import SchedulerRuntime

# ── Settings (singleton) ─────────────────────────────────────────────────


def get_settings() -> FetchbeatSettings:
    """Cached settings, loaded once per process."""
    return _load_settings()


# ── Runtime (per-app) ───────────────────────────────────────────────────


def get_runtime(request: Request) -> SchedulerRuntime:
    """The scheduler runtime built in the app lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ConfigError("Scheduler runtime is not initialised")
    return runtime


def get_actor(request: Request) -> str:
    """Identity of the authenticated operator, set by the auth middleware."""
    actor = getattr(request.state, "actor", None)
    if not actor:
        raise AuthError("No authenticated operator on this request")
    return actor


# ── Pagination parameters (per-request) ─────────────────────────────────


@dataclass(frozen=True, slots=True)
class PaginationParams:
    """Pagination parameters for list endpoints.

    Attributes:
        page: Page number (1-indexed, converted to offset internally)
        page_size: Items per page (capped at 500)
    """

    page: int = 1
    page_size: int = 50

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


def get_pagination(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page (max 500)"),
) -> PaginationParams:
    """FastAPI dependency for pagination parameters."""
    return PaginationParams(page=page, page_size=page_size)


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[FetchbeatSettings, Depends(get_settings)]
Runtime = Annotated[SchedulerRuntime, Depends(get_runtime)]
Actor = Annotated[str, Depends(get_actor)]
Pagination = Annotated[PaginationParams, Depends(get_pagination)]
