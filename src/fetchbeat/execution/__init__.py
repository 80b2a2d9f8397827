"""Execution: breaker, queue, ledger, conflict-retrying saves and the summary pipeline."""

from fetchbeat.execution.circuit_breaker import CircuitBreaker, CircuitState
from fetchbeat.execution.ledger import ExecutionLedger
from fetchbeat.execution.models import ExecutionRecord, ExecutionStatus, FailureKind, TriggerSource
from fetchbeat.execution.persistence import JobRunMutator, save_with_retry
from fetchbeat.execution.queue import ExecutionQueue, QueueEntry

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ExecutionLedger",
    "ExecutionQueue",
    "ExecutionRecord",
    "ExecutionStatus",
    "FailureKind",
    "JobRunMutator",
    "QueueEntry",
    "TriggerSource",
    "save_with_retry",
]
