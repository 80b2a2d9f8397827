"""Scheduler backend protocol.

A backend is responsible only for timing: calling the tick callback every
``interval_seconds`` on the process's event loop. Lease handling, due-job
evaluation and enqueueing all live in ``TickLoop``.

Tags:
    scheduling, protocol, pluggable-backend
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for scheduler timing backends.

    Implementations:
        - AsyncioSchedulerBackend: a task on the running event loop (default)

    The callback must run on the same loop as the execution queue, so a
    backend never spins up its own loop per tick.
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        """Start ticking. Must be called from inside a running event loop."""
        ...

    async def stop(self) -> None:
        """Stop ticking, waiting for the current tick to finish."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health status."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


__all__ = ["BackendHealth", "SchedulerBackend", "TickCallback"]
