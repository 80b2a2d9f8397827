"""Circuit breaker around the summary pipeline's external calls.

Manifesto:
    When the article, summary or speech services are down, every due job
    would otherwise spend its full timeout failing. The breaker counts
    consecutive failures, rejects work outright once the threshold is hit,
    and after a cool-down lets exactly one trial through to decide whether
    to close again.

    The counters live in process memory. Each leader starts CLOSED; a lease
    hand-off does not carry breaker state to the new leader.

Tags:
    circuit-breaker, fault-tolerance, resilience

Doc-Types:
    api-reference, architecture-diagram


    State Machine::

        CLOSED ──(failures >= threshold)──► OPEN
          ▲                                   │
          │                          now - opened_at >= cool_down
          │                                   ▼
          └──────(trial succeeds)─────── HALF_OPEN ──(trial fails)──► OPEN
                                                                 (fresh opened_at)
        any state ──reset()──► CLOSED
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from fetchbeat.core.clock import Clock, to_iso, utcnow
from fetchbeat.core.errors import CircuitOpenError
from fetchbeat.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # One trial allowed


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Failure rate as percentage of calls that actually ran."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rejected_requests": self.rejected_requests,
            "state_changes": self.state_changes,
            "failure_rate": round(self.failure_rate, 2),
            "last_failure_time": to_iso(self.last_failure_time) if self.last_failure_time else None,
            "last_success_time": to_iso(self.last_success_time) if self.last_success_time else None,
            "last_state_change": to_iso(self.last_state_change) if self.last_state_change else None,
        }


@dataclass
class CircuitBreaker:
    """Circuit breaker for the execution path.

    Attributes:
        name: Identifier for this circuit
        failure_threshold: Consecutive failures before opening
        cool_down: Seconds the circuit stays OPEN before allowing a trial
        clock: Source of "now", replaceable in tests
    """

    name: str = "summary-pipeline"
    failure_threshold: int = 5
    cool_down: float = 1800.0
    clock: Clock = field(default=utcnow, repr=False)

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: datetime | None = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        """Current state, after applying any due OPEN → HALF_OPEN transition."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def opened_at(self) -> datetime | None:
        with self._lock:
            return self._opened_at

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = (self.clock() - self._opened_at).total_seconds()
            if elapsed >= self.cool_down:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        now = self.clock()
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = now

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False
        elif new_state == CircuitState.OPEN:
            self._opened_at = now
            self._trial_in_flight = False
        elif new_state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False

        logger.warning(
            "circuit.state_changed",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failure_count=self._failure_count,
        )

    def allow_request(self) -> bool:
        """Decide whether a call may run now.

        In HALF_OPEN the first caller takes the single trial slot; everyone
        else is rejected until the trial reports back.
        """
        with self._lock:
            self._check_state_transition()
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True

            self._stats.rejected_requests += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = self.clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            self._stats.failed_requests += 1
            self._stats.last_failure_time = self.clock()

            if self._state == CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)

    def abandon_trial(self) -> None:
        """Free the HALF_OPEN trial slot without deciding the outcome."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self, actor: str | None = None) -> None:
        """Force the circuit CLOSED (admin operation)."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
        if actor is not None:
            logger.warning("circuit.reset", circuit=self.name, actor=actor)

    async def call_async(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Execute an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejected the call without running it
        """
        if not self.allow_request():
            raise CircuitOpenError(f"Circuit '{self.name}' is open, rejecting request")

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            self.abandon_trial()
            raise
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def get_status(self) -> dict[str, Any]:
        """Snapshot for the health reporter and admin API."""
        with self._lock:
            self._check_state_transition()
            now = self.clock()
            next_attempt = None
            seconds_until = None
            if self._state == CircuitState.OPEN and self._opened_at is not None:
                next_attempt = self._opened_at + timedelta(seconds=self.cool_down)
                seconds_until = max(0.0, (next_attempt - now).total_seconds())
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "cool_down_seconds": self.cool_down,
                "opened_at": to_iso(self._opened_at) if self._opened_at else None,
                "next_attempt_at": to_iso(next_attempt) if next_attempt else None,
                "seconds_until_next_attempt": seconds_until,
                "trial_in_flight": self._trial_in_flight,
                "stats": self._stats.to_dict(),
            }


__all__ = ["CircuitBreaker", "CircuitState", "CircuitStats"]
