"""
Scheduling: who runs (lease), what is due (due evaluation), the tick loop
that ties them together, and the health score over it all.

    from fetchbeat.core.scheduling import LeaseLock, TickLoop, is_due
"""

from fetchbeat.core.scheduling.asyncio_backend import AsyncioSchedulerBackend
from fetchbeat.core.scheduling.due import DueDecision, evaluate, is_due
from fetchbeat.core.scheduling.health import HealthReport, HealthReporter, HealthThresholds, score_health
from fetchbeat.core.scheduling.lease import Lease, LeaseLock
from fetchbeat.core.scheduling.protocol import BackendHealth, SchedulerBackend
from fetchbeat.core.scheduling.service import LeaderState, SchedulerStats, TickLoop

__all__ = [
    "AsyncioSchedulerBackend",
    "BackendHealth",
    "DueDecision",
    "HealthReport",
    "HealthReporter",
    "HealthThresholds",
    "LeaderState",
    "Lease",
    "LeaseLock",
    "SchedulerBackend",
    "SchedulerStats",
    "TickLoop",
    "evaluate",
    "is_due",
    "score_health",
]
