"""Tests for ExecutionLedger."""

from __future__ import annotations

from datetime import date

import pytest

from fetchbeat.core.errors import InvalidTransitionError, NotFoundError
from fetchbeat.execution.ledger import ExecutionLedger
from fetchbeat.execution.models import (
    ExecutionRecord,
    ExecutionStatus,
    FailureKind,
    TriggerSource,
    validate_execution_transition,
)

MONDAY = date(2024, 1, 1)


def new_record(user_id: str = "u-1", job_id: str = "daily", **kwargs) -> ExecutionRecord:
    return ExecutionRecord(user_id=user_id, job_id=job_id, scheduled_date=kwargs.pop("scheduled_date", MONDAY), **kwargs)


class TestLedgerTransitions:
    """Test the queued → running → terminal lifecycle."""

    def test_create_and_get(self, ledger, clock):
        record = ledger.create_queued(new_record(topics=["science"], job_name="Morning"))

        loaded = ledger.get(record.id)
        assert loaded.status == ExecutionStatus.QUEUED
        assert loaded.topics == ["science"]
        assert loaded.job_name == "Morning"
        assert loaded.created_at == clock()
        assert loaded.execution_key == "u-1:daily:2024-01-01"

    def test_create_requires_queued(self, ledger):
        with pytest.raises(InvalidTransitionError):
            ledger.create_queued(new_record(status=ExecutionStatus.RUNNING))

    def test_full_lifecycle_sets_duration(self, ledger, clock):
        record = ledger.create_queued(new_record())
        ledger.mark_running(record.id)
        clock.advance(2.5)

        done = ledger.mark_completed(record.id)

        assert done.status == ExecutionStatus.COMPLETED
        assert done.duration_ms == 2500
        stored = ledger.get(record.id)
        assert stored.finished_at == clock()
        assert stored.duration_ms == 2500

    def test_queued_can_fail_directly(self, ledger):
        record = ledger.create_queued(new_record())

        failed = ledger.mark_failed(record.id, FailureKind.CIRCUIT_OPEN, "circuit open")

        assert failed.status == ExecutionStatus.FAILED
        assert failed.duration_ms is None
        assert ledger.get(record.id).failure_kind == FailureKind.CIRCUIT_OPEN

    def test_terminal_records_are_immutable(self, ledger):
        record = ledger.create_queued(new_record())
        ledger.mark_running(record.id)
        ledger.mark_completed(record.id)

        with pytest.raises(InvalidTransitionError):
            ledger.mark_failed(record.id, FailureKind.INTERNAL, "late")
        with pytest.raises(InvalidTransitionError):
            ledger.mark_running(record.id)
        assert ledger.get(record.id).status == ExecutionStatus.COMPLETED

    def test_queued_cannot_complete(self, ledger):
        record = ledger.create_queued(new_record())
        with pytest.raises(InvalidTransitionError):
            ledger.mark_completed(record.id)

    def test_unknown_record(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.mark_running("missing")

    def test_concurrent_writer_loses_guarded_update(self, conn, ledger, clock):
        other = ExecutionLedger(conn, clock=clock)
        record = ledger.create_queued(new_record())
        stale = other.get(record.id)
        ledger.mark_running(record.id)

        with pytest.raises(InvalidTransitionError):
            other._guarded_update(stale, "status = ?", (ExecutionStatus.FAILED.value,))

    def test_long_errors_truncated(self, ledger):
        record = ledger.create_queued(new_record())
        ledger.mark_failed(record.id, FailureKind.INTERNAL, "x" * 5000)
        assert len(ledger.get(record.id).error) == 2000

    @pytest.mark.parametrize(
        "current, target",
        [
            (ExecutionStatus.QUEUED, ExecutionStatus.COMPLETED),
            (ExecutionStatus.FAILED, ExecutionStatus.RUNNING),
            (ExecutionStatus.COMPLETED, ExecutionStatus.QUEUED),
        ],
    )
    def test_invalid_transition_table(self, current, target):
        with pytest.raises(InvalidTransitionError):
            validate_execution_transition(current, target)


class TestFindBlocking:
    """Test the per-day idempotency check."""

    def test_nothing_recorded(self, ledger):
        assert ledger.find_blocking("u-1", "daily", MONDAY) is None

    def test_completed_blocks(self, ledger):
        record = ledger.create_queued(new_record())
        ledger.mark_running(record.id)
        ledger.mark_completed(record.id)

        assert ledger.find_blocking("u-1", "daily", MONDAY).id == record.id

    def test_failed_does_not_block(self, ledger):
        record = ledger.create_queued(new_record())
        ledger.mark_failed(record.id, FailureKind.TRANSIENT, "timeout")

        assert ledger.find_blocking("u-1", "daily", MONDAY) is None

    def test_in_flight_blocks_until_stale(self, ledger, clock):
        record = ledger.create_queued(new_record())
        ledger.mark_running(record.id)

        clock.advance(minutes=9)
        assert ledger.find_blocking("u-1", "daily", MONDAY, stale_after_minutes=10) is not None

        clock.advance(minutes=2)
        assert ledger.find_blocking("u-1", "daily", MONDAY, stale_after_minutes=10) is None

    def test_manual_runs_never_block(self, ledger):
        record = ledger.create_queued(new_record(trigger_source=TriggerSource.MANUAL))
        ledger.mark_running(record.id)
        ledger.mark_completed(record.id)

        assert ledger.find_blocking("u-1", "daily", MONDAY) is None

    def test_other_dates_do_not_block(self, ledger):
        record = ledger.create_queued(new_record())
        ledger.mark_running(record.id)
        ledger.mark_completed(record.id)

        assert ledger.find_blocking("u-1", "daily", date(2024, 1, 8)) is None


class TestLedgerStats:
    def _finish(self, ledger, user_id, status, kind=None):
        record = ledger.create_queued(new_record(user_id))
        if kind == FailureKind.CIRCUIT_OPEN:
            return ledger.mark_failed(record.id, kind, "open")
        ledger.mark_running(record.id)
        if status == ExecutionStatus.COMPLETED:
            return ledger.mark_completed(record.id)
        return ledger.mark_failed(record.id, kind or FailureKind.TRANSIENT, "err")

    def test_empty_window(self, ledger):
        stats = ledger.get_stats(24)
        assert stats["total"] == 0
        assert stats["success_rate"] is None
        assert stats["avg_duration_ms"] is None

    def test_success_rate_excludes_circuit_rejections(self, ledger):
        self._finish(ledger, "u-1", ExecutionStatus.COMPLETED)
        self._finish(ledger, "u-2", ExecutionStatus.COMPLETED)
        self._finish(ledger, "u-3", ExecutionStatus.FAILED)
        self._finish(ledger, "u-4", ExecutionStatus.FAILED, FailureKind.CIRCUIT_OPEN)

        stats = ledger.get_stats(24)

        assert stats["total"] == 4
        assert stats["completed"] == 2
        assert stats["failed"] == 2
        assert stats["circuit_rejected"] == 1
        assert stats["success_rate"] == pytest.approx(66.67)

    def test_only_circuit_rejections(self, ledger):
        self._finish(ledger, "u-1", ExecutionStatus.FAILED, FailureKind.CIRCUIT_OPEN)
        assert ledger.get_stats(24)["success_rate"] is None

    def test_window_excludes_old_records(self, ledger, clock):
        self._finish(ledger, "u-1", ExecutionStatus.FAILED)
        clock.advance(hours=25)
        self._finish(ledger, "u-2", ExecutionStatus.COMPLETED)

        stats = ledger.get_stats(24)
        assert stats["total"] == 1
        assert stats["success_rate"] == 100.0

    def test_count_stale_running(self, ledger, clock):
        record = ledger.create_queued(new_record())
        ledger.mark_running(record.id)
        assert ledger.count_stale_running(10) == 0

        clock.advance(minutes=10)
        assert ledger.count_stale_running(10) == 1

    def test_stats_by_user(self, ledger, clock):
        self._finish(ledger, "u-1", ExecutionStatus.COMPLETED)
        clock.advance(1)
        self._finish(ledger, "u-2", ExecutionStatus.COMPLETED)
        clock.advance(1)
        self._finish(ledger, "u-2", ExecutionStatus.FAILED)

        rows = ledger.stats_by_user(24)

        assert [row["user_id"] for row in rows] == ["u-2", "u-1"]
        assert rows[0]["total"] == 2
        assert rows[0]["completed"] == 1
        assert rows[0]["failed"] == 1


class TestLedgerListing:
    def test_list_recent_newest_first(self, ledger, clock):
        first = ledger.create_queued(new_record("u-1"))
        clock.advance(1)
        second = ledger.create_queued(new_record("u-2"))

        assert [r.id for r in ledger.list_recent()] == [second.id, first.id]
        assert [r.id for r in ledger.list_recent(limit=1, offset=1)] == [first.id]

    def test_filters(self, ledger, clock):
        done = ledger.create_queued(new_record("u-1"))
        ledger.mark_running(done.id)
        ledger.mark_completed(done.id)
        ledger.create_queued(new_record("u-2"))

        assert ledger.count() == 2
        assert ledger.count(status=ExecutionStatus.COMPLETED) == 1
        assert [r.id for r in ledger.list_recent(user_id="u-1")] == [done.id]
        assert ledger.list_recent(status=ExecutionStatus.RUNNING) == []


class TestLedgerPurge:
    def test_purges_only_old_finished_records(self, ledger, clock):
        finished = ledger.create_queued(new_record("u-1"))
        ledger.mark_failed(finished.id, FailureKind.TRANSIENT, "err")
        stuck = ledger.create_queued(new_record("u-2"))

        clock.advance(days=31)
        recent = ledger.create_queued(new_record("u-3"))
        ledger.mark_failed(recent.id, FailureKind.TRANSIENT, "err")

        assert ledger.purge_older_than(30) == 1
        assert ledger.get(finished.id) is None
        assert ledger.get(stuck.id) is not None
        assert ledger.get(recent.id) is not None
