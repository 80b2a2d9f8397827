"""Tick loop: lease-gated scanning of scheduled summaries.

Manifesto:
    Every process runs this loop; the lease decides which one does the work.
    A tick first secures the lease (acquire when idle, renew when leading)
    and only then scans users' job specs, evaluates which are due in each
    job's local time, and hands them to the execution queue. Losing the lease
    is a state transition, never an error: the loop stops scanning, lets
    in-flight workers finish, and goes back to competing for the lease.

Tags:
    scheduling, leader-election, tick-loop, due-evaluation

Doc-Types:
    api-reference, architecture-diagram


    Leader States::

        IDLE ──try_acquire ok──► LEADING ──renew fails / lost mid-scan──► STEPPING_DOWN
         ▲                          │                                         │
         │                          └── heartbeat renews every lease/3        │
         └─────────────────────── next tick ─────────────────────────────────┘

    Tick::

        secure lease ──no──► (IDLE) return
             │yes
             ▼
        for user in store.iter_users():      (abort if no longer LEADING)
            for entry in user.raw_job_specs():
                parse ok? due in job tz? not blocked by ledger? not already queued?
                    ledger.create_queued ──► breaker OPEN? ──yes──► mark_failed(circuit_open)
                                                     │no
                                                     ▼
                                               queue.enqueue
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from fetchbeat.core.clock import Clock, to_iso, utcnow
from fetchbeat.core.errors import ConflictError, FetchbeatError, NotFoundError, ValidationError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.models import JobSpec, UserState
from fetchbeat.core.scheduling.due import evaluate, local_date_for
from fetchbeat.core.scheduling.lease import LeaseLock
from fetchbeat.core.scheduling.protocol import BackendHealth, SchedulerBackend
from fetchbeat.core.user_store import UserStore
from fetchbeat.execution.circuit_breaker import CircuitBreaker, CircuitState
from fetchbeat.execution.ledger import ExecutionLedger
from fetchbeat.execution.models import ExecutionRecord, FailureKind, TriggerSource
from fetchbeat.execution.queue import ExecutionQueue, QueueEntry

logger = get_logger(__name__)

PURGE_INTERVAL = timedelta(hours=1)


class LeaderState(str, Enum):
    IDLE = "idle"
    LEADING = "leading"
    STEPPING_DOWN = "stepping_down"


@dataclass
class SchedulerStats:
    """Statistics for the tick loop."""

    tick_count: int = 0
    scans_completed: int = 0
    scans_abandoned: int = 0
    jobs_enqueued: int = 0
    jobs_skipped: int = 0
    jobs_rejected: int = 0
    jobs_invalid: int = 0
    leadership_changes: int = 0
    last_tick: datetime | None = None
    last_scan: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "scans_completed": self.scans_completed,
            "scans_abandoned": self.scans_abandoned,
            "jobs_enqueued": self.jobs_enqueued,
            "jobs_skipped": self.jobs_skipped,
            "jobs_rejected": self.jobs_rejected,
            "jobs_invalid": self.jobs_invalid,
            "leadership_changes": self.leadership_changes,
            "last_tick": to_iso(self.last_tick) if self.last_tick else None,
            "last_scan": to_iso(self.last_scan) if self.last_scan else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the tick loop itself."""

    healthy: bool
    state: LeaderState
    holder: str
    backend: BackendHealth | dict
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "state": self.state.value,
            "holder": self.holder,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "stats": self.stats.to_dict(),
        }


class TickLoop:
    """Lease-gated scheduler for scheduled summaries.

    Example:
        >>> loop = TickLoop(
        ...     backend=AsyncioSchedulerBackend(),
        ...     lease=LeaseLock(conn),
        ...     store=UserStore(conn),
        ...     ledger=ledger,
        ...     queue=queue,
        ...     breaker=breaker,
        ...     holder=settings.instance_id,
        ... )
        >>> loop.start()          # inside a running event loop
        >>> ...
        >>> await loop.stop()
    """

    def __init__(
        self,
        *,
        backend: SchedulerBackend,
        lease: LeaseLock,
        store: UserStore,
        ledger: ExecutionLedger,
        queue: ExecutionQueue,
        breaker: CircuitBreaker,
        holder: str,
        lease_seconds: float = 300.0,
        interval_seconds: float = 60.0,
        renew_timeout: float = 5.0,
        due_grace_minutes: int = 1,
        stale_running_minutes: int = 10,
        retention_days: int = 7,
        clock: Clock | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.lease = lease
        self.store = store
        self.ledger = ledger
        self.queue = queue
        self.breaker = breaker
        self.holder = holder
        self.lease_seconds = lease_seconds
        self.interval = interval_seconds
        self.renew_timeout = renew_timeout
        self.due_grace_minutes = due_grace_minutes
        self.stale_running_minutes = stale_running_minutes
        self.retention_days = retention_days
        self._clock = clock or utcnow
        self._sleep = sleep

        self._state = LeaderState.IDLE
        self._heartbeat: asyncio.Task | None = None
        self._running = False
        self._last_purge: datetime | None = None
        self.stats = SchedulerStats()

    # === Lifecycle ===

    def start(self) -> None:
        """Begin ticking on the running event loop."""
        if self._running:
            logger.warning("scheduler.already_running")
            return
        logger.info(
            "scheduler.starting",
            backend=self.backend.name,
            holder=self.holder,
            interval_seconds=self.interval,
            lease_seconds=self.lease_seconds,
        )
        self.backend.start(self.tick, self.interval)
        self._running = True

    async def stop(self, *, drain_timeout: float | None = 30.0) -> None:
        """Stop ticking, let in-flight jobs finish, then release the lease."""
        if not self._running:
            return
        logger.info("scheduler.stopping", holder=self.holder)
        await self.backend.stop()
        await self._cancel_heartbeat()
        if not await self.queue.drain(timeout=drain_timeout):
            logger.warning("scheduler.drain_timeout", running=self.queue.running_count)
        if self._state == LeaderState.LEADING:
            await asyncio.to_thread(self.lease.release, self.holder)
        self._state = LeaderState.IDLE
        self._running = False
        logger.info("scheduler.stopped", holder=self.holder)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> LeaderState:
        return self._state

    # === Tick Processing ===

    async def tick(self) -> None:
        """One scheduler tick. Never raises."""
        self.stats.tick_count += 1
        self.stats.last_tick = self._clock()
        try:
            if self._state == LeaderState.STEPPING_DOWN:
                self._state = LeaderState.IDLE

            if not await self._secure_lease():
                if self._state == LeaderState.LEADING:
                    await self._step_down("renew_failed")
                return

            if self._state != LeaderState.LEADING:
                self._become_leader()

            await self._scan()
            if self._state == LeaderState.LEADING:
                self._maybe_purge()
        except Exception as e:
            self.stats.last_error = str(e)
            logger.exception("scheduler.tick_failed", error=str(e))

    async def _secure_lease(self) -> bool:
        if self._state == LeaderState.LEADING:
            return await self._bounded(self.lease.renew, self.holder, self.lease_seconds)
        return await self._bounded(self.lease.try_acquire, self.holder, self.lease_seconds)

    async def _bounded(self, func: Callable[..., bool], *args: Any) -> bool:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.renew_timeout)
        except asyncio.TimeoutError:
            logger.warning("scheduler.lease_call_timeout", holder=self.holder, timeout=self.renew_timeout)
            return False

    def _become_leader(self) -> None:
        self._state = LeaderState.LEADING
        self.stats.leadership_changes += 1
        logger.info("scheduler.leading", holder=self.holder)
        self._heartbeat = asyncio.get_running_loop().create_task(
            self._heartbeat_loop(), name="fetchbeat-lease-heartbeat"
        )

    async def _step_down(self, reason: str) -> None:
        if self._state != LeaderState.LEADING:
            return
        self._state = LeaderState.STEPPING_DOWN
        self.stats.leadership_changes += 1
        logger.warning("scheduler.stepping_down", holder=self.holder, reason=reason)
        if self._heartbeat is not asyncio.current_task():
            await self._cancel_heartbeat()

    async def _heartbeat_loop(self) -> None:
        interval = self.lease_seconds / 3
        while self._state == LeaderState.LEADING:
            await self._sleep(interval)
            if self._state != LeaderState.LEADING:
                break
            if not await self._bounded(self.lease.renew, self.holder, self.lease_seconds):
                await self._step_down("heartbeat_failed")
                break

    async def _cancel_heartbeat(self) -> None:
        task, self._heartbeat = self._heartbeat, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _scan(self) -> None:
        now = self._clock()
        for user in self.store.iter_users():
            await asyncio.sleep(0)
            if self._state != LeaderState.LEADING:
                self.stats.scans_abandoned += 1
                logger.warning("scheduler.scan_abandoned", holder=self.holder, at_user=user.user_id)
                return
            for raw in user.raw_job_specs():
                self._consider(user, raw, now)
        self.stats.scans_completed += 1
        self.stats.last_scan = now

    def _consider(self, user: UserState, raw: dict[str, Any], now: datetime) -> None:
        try:
            job = JobSpec.from_dict(raw)
            timezone = user.timezone_for(job)
            decision = evaluate(job, timezone, now, grace_minutes=self.due_grace_minutes)
        except ValidationError as e:
            self.stats.jobs_invalid += 1
            logger.warning("scheduler.invalid_job", user_id=user.user_id, job_id=str(raw["id"]), error=str(e))
            return
        if not decision.due:
            return

        if self.queue.is_active(user.user_id, job.id):
            self.stats.jobs_skipped += 1
            return
        blocking = self.ledger.find_blocking(
            user.user_id, job.id, decision.local_date, self.stale_running_minutes
        )
        if blocking is not None:
            self.stats.jobs_skipped += 1
            logger.debug(
                "scheduler.already_recorded",
                user_id=user.user_id,
                job_id=job.id,
                status=blocking.status.value,
            )
            return

        record = ExecutionRecord(
            user_id=user.user_id,
            job_id=job.id,
            job_name=job.name,
            scheduled_date=decision.local_date,
            topics=job.all_topics,
        )
        self._submit(record, job, timezone)

    def _submit(self, record: ExecutionRecord, job: JobSpec, timezone: str) -> ExecutionRecord:
        """Record the run and hand it to the queue, unless the breaker is open."""
        self.ledger.create_queued(record)
        if self.breaker.state == CircuitState.OPEN:
            self.stats.jobs_rejected += 1
            logger.warning("scheduler.circuit_open_rejected", user_id=record.user_id, job_id=record.job_id)
            return self.ledger.mark_failed(record.id, FailureKind.CIRCUIT_OPEN, "circuit open")

        entry = QueueEntry(
            record_id=record.id,
            user_id=record.user_id,
            job=job,
            timezone=timezone,
            scheduled_date=record.scheduled_date,
            trigger_source=record.trigger_source,
        )
        if not self.queue.enqueue(entry):
            return self.ledger.mark_failed(record.id, FailureKind.CANCELLED, "already queued or running")
        self.stats.jobs_enqueued += 1
        logger.info(
            "scheduler.job_enqueued",
            user_id=record.user_id,
            job_id=record.job_id,
            scheduled_date=record.scheduled_date.isoformat(),
            trigger=record.trigger_source.value,
        )
        return record

    def _maybe_purge(self) -> None:
        now = self._clock()
        if self._last_purge is not None and now - self._last_purge < PURGE_INTERVAL:
            return
        self._last_purge = now
        try:
            self.ledger.purge_older_than(self.retention_days)
        except FetchbeatError as e:
            logger.warning("scheduler.purge_failed", error=str(e))

    # === Manual Operations ===

    async def trigger(self, user_id: str, job_id: str, actor: str) -> ExecutionRecord:
        """Run one job now on this process, outside its schedule.

        Goes through the same ledger, breaker and queue as scheduled runs,
        but is tagged ``manual`` and does not touch ``last_run``: the
        scheduled run later that day still happens.

        Raises:
            NotFoundError: Unknown user or job.
            ConflictError: The job is already queued or running here.
            ValidationError: The job spec is malformed.
        """
        user = self.store.load(user_id)
        job = user.job_spec(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found for user {user_id}").with_context(
                user_id=user_id, job_id=job_id
            )
        if self.queue.is_active(user_id, job_id):
            raise ConflictError(f"Job {job_id} is already queued or running").with_context(
                user_id=user_id, job_id=job_id
            )
        timezone = user.timezone_for(job)
        try:
            local_date = local_date_for(self._clock(), timezone)
        except ValidationError:
            timezone = "UTC"
            local_date = local_date_for(self._clock(), timezone)

        record = ExecutionRecord(
            user_id=user_id,
            job_id=job.id,
            job_name=job.name,
            scheduled_date=local_date,
            topics=job.all_topics,
            trigger_source=TriggerSource.MANUAL,
        )
        logger.warning("scheduler.manual_trigger", user_id=user_id, job_id=job_id, actor=actor)
        return self._submit(record, job, timezone)

    # === Health ===

    def health(self) -> SchedulerHealth:
        backend = self.backend.health()
        return SchedulerHealth(
            healthy=self._running and bool(backend.get("healthy")),
            state=self._state,
            holder=self.holder,
            backend=backend,
            stats=self.stats,
        )


__all__ = ["LeaderState", "SchedulerHealth", "SchedulerStats", "TickLoop"]
