"""Scheduler health reporting.

Aggregates the execution ledger, circuit breaker, execution queue and lease
into a single score. The reporter only reads; nothing here mutates
scheduler state.

    Scoring (start at 100, floor at 0)::

        success rate < 80%            -30
        success rate < 90%            -15
        circuit OPEN                  -40
        circuit HALF_OPEN             -20
        stuck running records > 0     -20
        backlog > 5 × threshold       -25
        backlog > threshold           -15

        >= 90 healthy   >= 70 warning   >= 50 degraded   else critical

The success rate excludes circuit-open rejections: those runs never
executed, and the open breaker is already penalised on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fetchbeat.core.clock import Clock, to_iso, utcnow
from fetchbeat.execution.circuit_breaker import CircuitState

if TYPE_CHECKING:
    from fetchbeat.core.scheduling.lease import LeaseLock
    from fetchbeat.core.scheduling.service import TickLoop
    from fetchbeat.execution.circuit_breaker import CircuitBreaker
    from fetchbeat.execution.ledger import ExecutionLedger
    from fetchbeat.execution.queue import ExecutionQueue


@dataclass(frozen=True)
class HealthThresholds:
    low_success_rate: float = 80.0
    warn_success_rate: float = 90.0
    backlog: int = 10


@dataclass
class HealthReport:
    """Scheduler health snapshot."""

    score: int
    status: str
    issues: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    generated_at: datetime | None = None

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "status": self.status,
            "healthy": self.healthy,
            "issues": list(self.issues),
            "metrics": self.metrics,
            "generated_at": to_iso(self.generated_at) if self.generated_at else None,
        }


def status_for(score: int) -> str:
    if score >= 90:
        return "healthy"
    if score >= 70:
        return "warning"
    if score >= 50:
        return "degraded"
    return "critical"


def score_health(
    *,
    success_rate: float | None,
    circuit_state: CircuitState | str,
    stale_running: int,
    queue_length: int,
    thresholds: HealthThresholds = HealthThresholds(),
) -> tuple[int, list[str]]:
    """Pure scoring function. Returns ``(score, issues)``."""
    score = 100
    issues: list[str] = []

    if success_rate is not None:
        if success_rate < thresholds.low_success_rate:
            score -= 30
            issues.append(f"Low success rate: {success_rate:.1f}%")
        elif success_rate < thresholds.warn_success_rate:
            score -= 15
            issues.append(f"Success rate below {thresholds.warn_success_rate:.0f}%: {success_rate:.1f}%")

    state = CircuitState(circuit_state)
    if state == CircuitState.OPEN:
        score -= 40
        issues.append("Circuit breaker is OPEN")
    elif state == CircuitState.HALF_OPEN:
        score -= 20
        issues.append("Circuit breaker is HALF_OPEN")

    if stale_running > 0:
        score -= 20
        issues.append(f"{stale_running} execution(s) stuck in running")

    if queue_length > thresholds.backlog * 5:
        score -= 25
        issues.append(f"Severe queue backlog: {queue_length} waiting")
    elif queue_length > thresholds.backlog:
        score -= 15
        issues.append(f"Queue backlog: {queue_length} waiting")

    return max(0, score), issues


class HealthReporter:
    """Collects component snapshots and scores them."""

    def __init__(
        self,
        *,
        ledger: ExecutionLedger,
        breaker: CircuitBreaker,
        queue: ExecutionQueue,
        lease: LeaseLock,
        scheduler: TickLoop | None = None,
        window_hours: int = 24,
        stale_running_minutes: int = 10,
        thresholds: HealthThresholds = HealthThresholds(),
        clock: Clock | None = None,
    ) -> None:
        self.ledger = ledger
        self.breaker = breaker
        self.queue = queue
        self.lease = lease
        self.scheduler = scheduler
        self.window_hours = window_hours
        self.stale_running_minutes = stale_running_minutes
        self.thresholds = thresholds
        self._clock = clock or utcnow

    def report(self, hours: int | None = None) -> HealthReport:
        window = hours or self.window_hours
        executions = self.ledger.get_stats(window)
        stale = self.ledger.count_stale_running(self.stale_running_minutes)
        executions["stale_running"] = stale
        circuit = self.breaker.get_status()
        queue = self.queue.get_status()

        score, issues = score_health(
            success_rate=executions["success_rate"],
            circuit_state=circuit["state"],
            stale_running=stale,
            queue_length=queue["queue_length"],
            thresholds=self.thresholds,
        )
        metrics: dict[str, Any] = {
            "executions": executions,
            "circuit_breaker": circuit,
            "queue": queue,
            "lease": self.lease.status(),
        }
        if self.scheduler is not None:
            metrics["scheduler"] = self.scheduler.health().to_dict()
        return HealthReport(
            score=score,
            status=status_for(score),
            issues=issues,
            metrics=metrics,
            generated_at=self._clock(),
        )


__all__ = ["HealthReport", "HealthReporter", "HealthThresholds", "score_health", "status_for"]
