"""Execution record model and status transition rules."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from fetchbeat.core.clock import to_iso, utcnow
from fetchbeat.core.errors import (
    CircuitOpenError,
    ConflictError,
    InvalidTransitionError,
    TransientError,
    ValidationError,
)


class ExecutionStatus(str, Enum):
    """Status of a scheduled summary run.

    Valid transition graph::

        QUEUED   → RUNNING | FAILED   (FAILED: circuit open, queue cleared)
        RUNNING  → COMPLETED | FAILED
        COMPLETED → (terminal)
        FAILED    → (terminal)
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


EXECUTION_VALID_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.QUEUED: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.RUNNING: frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


def validate_execution_transition(current: ExecutionStatus, target: ExecutionStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in EXECUTION_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            f"Invalid ExecutionStatus transition: {current.value} → {target.value}"
        )


class FailureKind(str, Enum):
    """Why a run failed. Health scoring ignores ``CIRCUIT_OPEN``."""

    CIRCUIT_OPEN = "circuit_open"
    TRANSIENT = "transient"
    CONFLICT = "conflict"
    INVALID = "invalid"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


def failure_kind_for(error: BaseException) -> FailureKind:
    """Map an exception raised by a job to the ledger's failure kind."""
    if isinstance(error, CircuitOpenError):
        return FailureKind.CIRCUIT_OPEN
    if isinstance(error, ConflictError):
        return FailureKind.CONFLICT
    if isinstance(error, ValidationError):
        return FailureKind.INVALID
    if isinstance(error, (TransientError, TimeoutError, ConnectionError)):
        return FailureKind.TRANSIENT
    return FailureKind.INTERNAL


class TriggerSource(str, Enum):
    SCHEDULE = "schedule"
    MANUAL = "manual"


def execution_key(user_id: str, job_id: str, scheduled_date: date) -> str:
    """Idempotency key: one scheduled run per user, job and local date."""
    return f"{user_id}:{job_id}:{scheduled_date.isoformat()}"


@dataclass
class ExecutionRecord:
    """One attempted run of a job spec."""

    user_id: str
    job_id: str
    scheduled_date: date
    job_name: str = ""
    topics: list[str] = field(default_factory=list)
    trigger_source: TriggerSource = TriggerSource.SCHEDULE
    status: ExecutionStatus = ExecutionStatus.QUEUED
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    failure_kind: FailureKind | None = None
    error: str | None = None

    @property
    def execution_key(self) -> str:
        return execution_key(self.user_id, self.job_id, self.scheduled_date)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "execution_key": self.execution_key,
            "user_id": self.user_id,
            "job_id": self.job_id,
            "job_name": self.job_name,
            "scheduled_date": self.scheduled_date.isoformat(),
            "trigger_source": self.trigger_source.value,
            "status": self.status.value,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "error": self.error,
            "topics": list(self.topics),
            "created_at": to_iso(self.created_at),
            "started_at": to_iso(self.started_at) if self.started_at else None,
            "finished_at": to_iso(self.finished_at) if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }


__all__ = [
    "EXECUTION_VALID_TRANSITIONS",
    "ExecutionRecord",
    "ExecutionStatus",
    "FailureKind",
    "TriggerSource",
    "execution_key",
    "failure_kind_for",
    "validate_execution_transition",
]
