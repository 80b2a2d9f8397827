"""Assemble a fetchbeat process from settings.

``create_runtime`` wires the store, lease, ledger, breaker, queue, pipeline,
tick loop and health reporter together. The API lifespan and the ``run``
CLI command both go through it.
"""

from __future__ import annotations

from dataclasses import dataclass

from fetchbeat.core.clock import Clock, utcnow
from fetchbeat.core.errors import ConfigError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.protocols import Collaborators, load_collaborators
from fetchbeat.core.schema import apply_schema
from fetchbeat.core.scheduling.asyncio_backend import AsyncioSchedulerBackend
from fetchbeat.core.scheduling.health import HealthReporter, HealthThresholds
from fetchbeat.core.scheduling.lease import LeaseLock
from fetchbeat.core.scheduling.service import TickLoop
from fetchbeat.core.settings import FetchbeatSettings
from fetchbeat.core.sqlite_conn import SqliteConnection
from fetchbeat.core.user_store import UserStore
from fetchbeat.execution.circuit_breaker import CircuitBreaker
from fetchbeat.execution.ledger import ExecutionLedger
from fetchbeat.execution.pipeline import SummaryPipeline
from fetchbeat.execution.queue import ExecutionQueue, QueueEntry

logger = get_logger(__name__)


async def _unconfigured(entry: QueueEntry) -> None:
    raise ConfigError("No collaborators configured; set FETCHBEAT_COLLABORATORS")


@dataclass
class SchedulerRuntime:
    settings: FetchbeatSettings
    conn: SqliteConnection
    store: UserStore
    ledger: ExecutionLedger
    lease: LeaseLock
    breaker: CircuitBreaker
    queue: ExecutionQueue
    scheduler: TickLoop
    reporter: HealthReporter
    pipeline: SummaryPipeline | None = None

    @property
    def can_execute(self) -> bool:
        return self.pipeline is not None

    def require_executor(self) -> None:
        if self.pipeline is None:
            raise ConfigError("This instance has no collaborators configured and cannot execute jobs")

    def start(self) -> None:
        """Start the tick loop. Requires collaborators and a running event loop."""
        self.require_executor()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    def close(self) -> None:
        self.conn.close()


def create_runtime(
    settings: FetchbeatSettings,
    *,
    collaborators: Collaborators | None = None,
    conn: SqliteConnection | None = None,
    clock: Clock | None = None,
) -> SchedulerRuntime:
    """Build every component for one process.

    ``collaborators`` defaults to the factory named by
    ``settings.collaborators``; with neither, the runtime can serve the
    admin API but not execute jobs.
    """
    clock = clock or utcnow
    conn = conn or SqliteConnection(settings.database_path)
    apply_schema(conn)

    if collaborators is None and settings.collaborators:
        collaborators = load_collaborators(settings.collaborators)

    store = UserStore(conn, clock=clock)
    ledger = ExecutionLedger(conn, clock=clock)
    lease = LeaseLock(
        conn,
        resource=settings.lease_resource,
        lease_seconds=settings.lease_seconds,
        clock=clock,
    )
    breaker = CircuitBreaker(
        failure_threshold=settings.failure_threshold,
        cool_down=settings.cool_down_seconds,
        clock=clock,
    )

    pipeline = None
    if collaborators is not None:
        pipeline = SummaryPipeline(
            collaborators,
            store,
            breaker,
            call_timeout=settings.external_call_timeout_seconds,
            save_max_retries=settings.save_max_retries,
            save_base_delay=settings.save_base_delay_seconds,
            history_limit=settings.history_limit,
            clock=clock,
        )
    else:
        logger.warning("runtime.no_collaborators")

    queue = ExecutionQueue(
        pipeline or _unconfigured,
        ledger,
        max_concurrency=settings.max_concurrency,
        clock=clock,
    )
    scheduler = TickLoop(
        backend=AsyncioSchedulerBackend(),
        lease=lease,
        store=store,
        ledger=ledger,
        queue=queue,
        breaker=breaker,
        holder=settings.instance_id,
        lease_seconds=settings.lease_seconds,
        interval_seconds=settings.tick_interval_seconds,
        renew_timeout=settings.renew_timeout_seconds,
        due_grace_minutes=settings.due_grace_minutes,
        stale_running_minutes=settings.stale_running_minutes,
        retention_days=settings.execution_retention_days,
        clock=clock,
    )
    reporter = HealthReporter(
        ledger=ledger,
        breaker=breaker,
        queue=queue,
        lease=lease,
        scheduler=scheduler,
        window_hours=settings.health_window_hours,
        stale_running_minutes=settings.stale_running_minutes,
        thresholds=HealthThresholds(backlog=settings.backlog_threshold),
        clock=clock,
    )
    return SchedulerRuntime(
        settings=settings,
        conn=conn,
        store=store,
        ledger=ledger,
        lease=lease,
        breaker=breaker,
        queue=queue,
        scheduler=scheduler,
        reporter=reporter,
        pipeline=pipeline,
    )


__all__ = ["SchedulerRuntime", "create_runtime"]
