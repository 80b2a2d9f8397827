"""Execution ledger: an append-only record of every attempted job run.

Each record is created at enqueue time (``queued``) and updated at most
twice: once to ``running`` and once to a terminal status. Updates are
guarded on the current status in the WHERE clause, so a record that already
finished can never be rewritten.

The ledger also answers the tick loop's idempotency question
(``find_blocking``) and feeds the health reporter (``get_stats``,
``count_stale_running``).
"""

from __future__ import annotations

import json
from datetime import date, timedelta
from typing import Any

from fetchbeat.core.clock import Clock, parse_iso, to_iso, utcnow
from fetchbeat.core.errors import InvalidTransitionError, NotFoundError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.protocols import Connection
from fetchbeat.execution.models import (
    ExecutionRecord,
    ExecutionStatus,
    FailureKind,
    TriggerSource,
    validate_execution_transition,
)

logger = get_logger(__name__)

_COLUMNS = """
    id, user_id, job_id, job_name, scheduled_date, trigger_source, status,
    failure_kind, error, topics, created_at, started_at, finished_at, duration_ms
"""


class ExecutionLedger:
    """Store for ``ExecutionRecord`` rows in ``scheduler_executions``."""

    def __init__(self, conn: Connection, *, clock: Clock | None = None) -> None:
        self._conn = conn
        self._clock = clock or utcnow

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_queued(self, record: ExecutionRecord) -> ExecutionRecord:
        """Persist a new record in ``queued`` status."""
        if record.status != ExecutionStatus.QUEUED:
            raise InvalidTransitionError(f"New records must be queued, got {record.status.value}")
        record.created_at = self._clock()
        self._conn.execute(
            """
            INSERT INTO scheduler_executions (
                id, execution_key, user_id, job_id, job_name, scheduled_date,
                trigger_source, status, topics, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.execution_key,
                record.user_id,
                record.job_id,
                record.job_name,
                record.scheduled_date.isoformat(),
                record.trigger_source.value,
                record.status.value,
                json.dumps(record.topics),
                to_iso(record.created_at),
            ),
        )
        return record

    def mark_running(self, execution_id: str) -> ExecutionRecord:
        record = self._require(execution_id)
        validate_execution_transition(record.status, ExecutionStatus.RUNNING)
        now = self._clock()
        self._guarded_update(
            record,
            "status = ?, started_at = ?",
            (ExecutionStatus.RUNNING.value, to_iso(now)),
        )
        record.status = ExecutionStatus.RUNNING
        record.started_at = now
        return record

    def mark_completed(self, execution_id: str) -> ExecutionRecord:
        return self._finish(execution_id, ExecutionStatus.COMPLETED, None, None)

    def mark_failed(
        self,
        execution_id: str,
        kind: FailureKind,
        error: str | None = None,
    ) -> ExecutionRecord:
        return self._finish(execution_id, ExecutionStatus.FAILED, kind, error)

    def _finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        kind: FailureKind | None,
        error: str | None,
    ) -> ExecutionRecord:
        record = self._require(execution_id)
        validate_execution_transition(record.status, status)
        now = self._clock()
        duration_ms = None
        if record.started_at is not None:
            duration_ms = max(0, int((now - record.started_at).total_seconds() * 1000))
        self._guarded_update(
            record,
            "status = ?, finished_at = ?, duration_ms = ?, failure_kind = ?, error = ?",
            (
                status.value,
                to_iso(now),
                duration_ms,
                kind.value if kind else None,
                error[:2000] if error else None,
            ),
        )
        record.status = status
        record.finished_at = now
        record.duration_ms = duration_ms
        record.failure_kind = kind
        record.error = error
        return record

    def _guarded_update(self, record: ExecutionRecord, assignments: str, params: tuple) -> None:
        changed = self._conn.execute(
            f"UPDATE scheduler_executions SET {assignments} WHERE id = ? AND status = ?",
            (*params, record.id, record.status.value),
        )
        if changed != 1:
            raise InvalidTransitionError(
                f"Execution {record.id} is no longer {record.status.value}"
            ).with_context(execution_id=record.id)

    def purge_older_than(self, days: int) -> int:
        """Delete finished records created more than ``days`` ago."""
        cutoff = self._clock() - timedelta(days=days)
        count = self._conn.execute(
            "DELETE FROM scheduler_executions WHERE created_at < ? AND status IN (?, ?)",
            (to_iso(cutoff), ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value),
        )
        if count:
            logger.info("ledger.purged", count=count, older_than_days=days)
        return count

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, execution_id: str) -> ExecutionRecord | None:
        row = self._conn.fetchone(
            f"SELECT {_COLUMNS} FROM scheduler_executions WHERE id = ?", (execution_id,)
        )
        return self._row_to_record(row) if row is not None else None

    def _require(self, execution_id: str) -> ExecutionRecord:
        record = self.get(execution_id)
        if record is None:
            raise NotFoundError(f"Execution {execution_id} not found").with_context(
                execution_id=execution_id
            )
        return record

    def find_blocking(
        self,
        user_id: str,
        job_id: str,
        scheduled_date: date,
        stale_after_minutes: int = 10,
    ) -> ExecutionRecord | None:
        """Return a scheduled record that forbids starting another run today.

        A completed run blocks. A queued or running run blocks until it has
        been stuck for ``stale_after_minutes``; after that the job may be
        picked up again.
        """
        stale_before = self._clock() - timedelta(minutes=stale_after_minutes)
        row = self._conn.fetchone(
            f"""
            SELECT {_COLUMNS} FROM scheduler_executions
            WHERE execution_key = ? AND trigger_source = ?
              AND (
                status = ?
                OR (status IN (?, ?) AND COALESCE(started_at, created_at) > ?)
              )
            ORDER BY created_at DESC LIMIT 1
            """,
            (
                f"{user_id}:{job_id}:{scheduled_date.isoformat()}",
                TriggerSource.SCHEDULE.value,
                ExecutionStatus.COMPLETED.value,
                ExecutionStatus.QUEUED.value,
                ExecutionStatus.RUNNING.value,
                to_iso(stale_before),
            ),
        )
        return self._row_to_record(row) if row is not None else None

    def list_recent(
        self,
        *,
        status: ExecutionStatus | None = None,
        user_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExecutionRecord]:
        """Newest first, optionally filtered by status and user."""
        where, params = self._filters(status, user_id)
        rows = self._conn.fetchall(
            f"SELECT {_COLUMNS} FROM scheduler_executions {where} "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [self._row_to_record(row) for row in rows]

    def count(self, *, status: ExecutionStatus | None = None, user_id: str | None = None) -> int:
        where, params = self._filters(status, user_id)
        row = self._conn.fetchone(f"SELECT COUNT(*) AS n FROM scheduler_executions {where}", params)
        return int(row["n"])

    @staticmethod
    def _filters(status: ExecutionStatus | None, user_id: str | None) -> tuple[str, tuple]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, tuple(params)

    def get_stats(self, hours: int = 24) -> dict[str, Any]:
        """Aggregate records created in the last ``hours``.

        ``success_rate`` is computed over runs that actually executed:
        completed plus failed, excluding circuit-open rejections. It is
        ``None`` when nothing executed in the window.
        """
        since = self._clock() - timedelta(hours=hours)
        rows = self._conn.fetchall(
            """
            SELECT status, failure_kind, COUNT(*) AS n, AVG(duration_ms) AS avg_ms
            FROM scheduler_executions
            WHERE created_at >= ?
            GROUP BY status, failure_kind
            """,
            (to_iso(since),),
        )
        counts = {status.value: 0 for status in ExecutionStatus}
        circuit_rejected = 0
        completed_avg = None
        for row in rows:
            counts[row["status"]] = counts.get(row["status"], 0) + row["n"]
            if row["failure_kind"] == FailureKind.CIRCUIT_OPEN.value:
                circuit_rejected += row["n"]
            if row["status"] == ExecutionStatus.COMPLETED.value:
                completed_avg = row["avg_ms"]

        executed = counts["completed"] + counts["failed"] - circuit_rejected
        success_rate = (counts["completed"] / executed * 100) if executed > 0 else None
        return {
            "window_hours": hours,
            "total": sum(counts.values()),
            "queued": counts["queued"],
            "running": counts["running"],
            "completed": counts["completed"],
            "failed": counts["failed"],
            "circuit_rejected": circuit_rejected,
            "success_rate": round(success_rate, 2) if success_rate is not None else None,
            "avg_duration_ms": round(completed_avg) if completed_avg is not None else None,
        }

    def count_stale_running(self, stale_after_minutes: int = 10) -> int:
        """Records stuck in ``running`` longer than ``stale_after_minutes``."""
        stale_before = self._clock() - timedelta(minutes=stale_after_minutes)
        row = self._conn.fetchone(
            "SELECT COUNT(*) AS n FROM scheduler_executions WHERE status = ? AND started_at <= ?",
            (ExecutionStatus.RUNNING.value, to_iso(stale_before)),
        )
        return int(row["n"])

    def stats_by_user(self, hours: int = 24, limit: int = 10) -> list[dict[str, Any]]:
        """Per-user run counts in the window, busiest users first."""
        since = self._clock() - timedelta(hours=hours)
        rows = self._conn.fetchall(
            """
            SELECT user_id,
                   COUNT(*) AS total,
                   SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
                   SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed,
                   MAX(created_at) AS last_execution
            FROM scheduler_executions
            WHERE created_at >= ?
            GROUP BY user_id
            ORDER BY total DESC, user_id
            LIMIT ?
            """,
            (to_iso(since), limit),
        )
        return [
            {
                "user_id": row["user_id"],
                "total": row["total"],
                "completed": row["completed"],
                "failed": row["failed"],
                "last_execution": row["last_execution"],
            }
            for row in rows
        ]

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _row_to_record(row: Any) -> ExecutionRecord:
        return ExecutionRecord(
            id=row["id"],
            user_id=row["user_id"],
            job_id=row["job_id"],
            job_name=row["job_name"],
            scheduled_date=date.fromisoformat(row["scheduled_date"]),
            trigger_source=TriggerSource(row["trigger_source"]),
            status=ExecutionStatus(row["status"]),
            failure_kind=FailureKind(row["failure_kind"]) if row["failure_kind"] else None,
            error=row["error"],
            topics=json.loads(row["topics"] or "[]"),
            created_at=parse_iso(row["created_at"]),
            started_at=parse_iso(row["started_at"]),
            finished_at=parse_iso(row["finished_at"]),
            duration_ms=row["duration_ms"],
        )


__all__ = ["ExecutionLedger"]
