"""
Bounded-concurrency execution queue.

Due jobs are pushed here by the tick loop (or an operator's manual trigger)
and run as asyncio tasks, at most ``max_concurrency`` at a time. Entries
start in priority order, FIFO within a priority. The queue lives in process
memory only: anything still waiting when the process dies is rediscovered by
the next leader's scan, because its ledger record goes stale and its
``last_run`` was never written.

Each worker owns exactly one ledger record and moves it
``queued → running → completed|failed``. No exception raised by the handler
escapes the worker; it is recorded and the slot is freed for the next entry.

    Worker Flow::

        enqueue ──► [heap] ──pump──► worker task (≤ max_concurrency)
                                       │ mark_running
                                       │ await handler(entry)
                                       │ mark_completed | mark_failed
                                       └─► slot freed, pump again
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from fetchbeat.core.clock import Clock, to_iso, utcnow
from fetchbeat.core.errors import FetchbeatError
from fetchbeat.core.logging import LogContext, get_logger
from fetchbeat.core.models import JobSpec
from fetchbeat.execution.ledger import ExecutionLedger
from fetchbeat.execution.models import FailureKind, TriggerSource, failure_kind_for

logger = get_logger(__name__)


@dataclass
class QueueEntry:
    """A job waiting for (or holding) a worker slot."""

    record_id: str
    user_id: str
    job: JobSpec
    timezone: str
    scheduled_date: date
    trigger_source: TriggerSource = TriggerSource.SCHEDULE
    priority: int = 0
    enqueued_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.job.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "user_id": self.user_id,
            "job_id": self.job.id,
            "job_name": self.job.name,
            "scheduled_date": self.scheduled_date.isoformat(),
            "trigger_source": self.trigger_source.value,
            "priority": self.priority,
            "enqueued_at": to_iso(self.enqueued_at),
        }


@dataclass
class QueueStats:
    total_processed: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    total_cleared: int = 0
    peak_running: int = 0
    last_processed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "total_cleared": self.total_cleared,
            "peak_running": self.peak_running,
            "last_processed_at": to_iso(self.last_processed_at) if self.last_processed_at else None,
        }


Handler = Callable[[QueueEntry], Awaitable[Any]]


class ExecutionQueue:
    """In-process work queue with a worker cap.

    Must be used from a single event loop; ``enqueue`` schedules worker tasks
    on the running loop.
    """

    def __init__(
        self,
        handler: Handler,
        ledger: ExecutionLedger,
        *,
        max_concurrency: int = 3,
        clock: Clock | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._handler = handler
        self._ledger = ledger
        self.max_concurrency = max_concurrency
        self._clock = clock or utcnow
        self._heap: list[tuple[int, int, QueueEntry]] = []
        self._seq = itertools.count()
        self._pending_keys: set[tuple[str, str]] = set()
        self._running: dict[tuple[str, str], QueueEntry] = {}
        self._tasks: set[asyncio.Task] = set()
        self._paused = False
        self._idle = asyncio.Event()
        self._idle.set()
        self.stats = QueueStats()

    # ── Producing ────────────────────────────────────────────────────

    def enqueue(self, entry: QueueEntry) -> bool:
        """Add an entry. Returns False if the same job is already queued or running."""
        if self.is_active(entry.user_id, entry.job.id):
            logger.info("queue.duplicate_skipped", user_id=entry.user_id, job_id=entry.job.id)
            return False
        entry.enqueued_at = self._clock()
        heapq.heappush(self._heap, (-entry.priority, next(self._seq), entry))
        self._pending_keys.add(entry.key)
        self._idle.clear()
        logger.debug(
            "queue.enqueued",
            user_id=entry.user_id,
            job_id=entry.job.id,
            record_id=entry.record_id,
            queue_length=len(self._heap),
        )
        self._pump()
        return True

    def is_active(self, user_id: str, job_id: str) -> bool:
        key = (user_id, job_id)
        return key in self._pending_keys or key in self._running

    # ── Control ──────────────────────────────────────────────────────

    def pause(self) -> None:
        """Stop starting new entries; running ones continue."""
        self._paused = True
        logger.info("queue.paused")

    def resume(self) -> None:
        self._paused = False
        logger.info("queue.resumed")
        self._pump()

    def clear(self, actor: str | None = None) -> int:
        """Drop every entry that has not started. Their records fail as cancelled.

        Returns:
            Number of entries removed.
        """
        removed = 0
        while self._heap:
            _, _, entry = heapq.heappop(self._heap)
            self._pending_keys.discard(entry.key)
            self._fail_record(entry, FailureKind.CANCELLED, "queue cleared")
            removed += 1
        self.stats.total_cleared += removed
        self._update_idle()
        logger.warning("queue.cleared", removed=removed, actor=actor)
        return removed

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait until nothing is queued or running.

        Returns:
            False if ``timeout`` elapsed first.
        """
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def cancel_running(self) -> None:
        """Cancel in-flight workers and wait for them to record the cancellation."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── Inspection ───────────────────────────────────────────────────

    @property
    def queue_length(self) -> int:
        return len(self._heap)

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def paused(self) -> bool:
        return self._paused

    def get_status(self) -> dict[str, Any]:
        next_entry = None
        if self._heap:
            entry = self._heap[0][2]
            next_entry = {
                **entry.to_dict(),
                "wait_seconds": max(0.0, (self._clock() - entry.enqueued_at).total_seconds()),
            }
        return {
            "queue_length": self.queue_length,
            "running_count": self.running_count,
            "max_concurrency": self.max_concurrency,
            "paused": self._paused,
            "next_entry": next_entry,
            "stats": self.stats.to_dict(),
        }

    # ── Workers ──────────────────────────────────────────────────────

    def _pump(self) -> None:
        while not self._paused and self._heap and len(self._running) < self.max_concurrency:
            _, _, entry = heapq.heappop(self._heap)
            self._pending_keys.discard(entry.key)
            self._running[entry.key] = entry
            self.stats.peak_running = max(self.stats.peak_running, len(self._running))
            task = asyncio.get_running_loop().create_task(
                self._run(entry), name=f"fetchbeat-job-{entry.record_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, entry: QueueEntry) -> None:
        async with LogContext(
            execution_id=entry.record_id, user_id=entry.user_id, job_id=entry.job.id
        ):
            try:
                await self._execute(entry)
            finally:
                self._running.pop(entry.key, None)
                self.stats.total_processed += 1
                self.stats.last_processed_at = self._clock()
                self._pump()
                self._update_idle()

    async def _execute(self, entry: QueueEntry) -> None:
        try:
            self._ledger.mark_running(entry.record_id)
        except FetchbeatError as e:
            self.stats.total_failed += 1
            logger.error("job.start_failed", error=str(e))
            return

        logger.info("job.started", trigger=entry.trigger_source.value)
        try:
            await self._handler(entry)
        except asyncio.CancelledError:
            self.stats.total_failed += 1
            self._fail_record(entry, FailureKind.CANCELLED, "cancelled")
            raise
        except Exception as e:
            self.stats.total_failed += 1
            kind = failure_kind_for(e)
            self._fail_record(entry, kind, str(e) or e.__class__.__name__)
            logger.warning("job.failed", failure_kind=kind.value, error=str(e), error_type=e.__class__.__name__)
            return

        try:
            record = self._ledger.mark_completed(entry.record_id)
        except FetchbeatError as e:
            self.stats.total_failed += 1
            logger.error("job.complete_not_recorded", error=str(e))
            return
        self.stats.total_succeeded += 1
        logger.info("job.completed", duration_ms=record.duration_ms)

    def _fail_record(self, entry: QueueEntry, kind: FailureKind, message: str) -> None:
        try:
            self._ledger.mark_failed(entry.record_id, kind, message)
        except FetchbeatError as e:
            logger.error("job.failure_not_recorded", record_id=entry.record_id, error=str(e))

    def _update_idle(self) -> None:
        if not self._heap and not self._running:
            self._idle.set()
        else:
            self._idle.clear()


__all__ = ["ExecutionQueue", "QueueEntry", "QueueStats"]
