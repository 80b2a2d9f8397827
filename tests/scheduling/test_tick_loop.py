"""Tests for TickLoop: leadership, due scanning and manual triggers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fetchbeat.core.errors import ConflictError, NotFoundError
from fetchbeat.core.scheduling import LeaderState, LeaseLock
from fetchbeat.execution.models import ExecutionRecord, ExecutionStatus, FailureKind, TriggerSource
from tests._support.builders import job_dict
from tests._support.fakes import GateSleep, RecordingHandler, trip_breaker

# Monday 2024-01-01 09:00 in New York
NY_MONDAY_9AM = datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)


async def settle(loop, timeout: float = 2.0) -> None:
    assert await loop.queue.drain(timeout=timeout)


async def tick_as_leader(loop) -> None:
    """Tick, and tick once more if the first tick only stepped down after a time jump."""
    await loop.tick()
    if loop.state != LeaderState.LEADING:
        await loop.tick()
    assert loop.state == LeaderState.LEADING


class LeaseLossStore:
    """UserStore wrapper that calls ``on_second_user`` just before handing out the second user."""

    def __init__(self, store, on_second_user) -> None:
        self._store = store
        self._on_second_user = on_second_user

    def iter_users(self, batch_size: int = 200):
        for index, user in enumerate(self._store.iter_users(batch_size)):
            if index == 1:
                self._on_second_user()
            yield user

    def __getattr__(self, name):
        return getattr(self._store, name)


def lose_lease(loop, lease_lock, conn, clock) -> None:
    """Hand the lease to node-b and let the heartbeat's step-down run at the scan's next yield."""
    lease_lock.force_release("node-a", actor="test")
    LeaseLock(conn, clock=clock).try_acquire("node-b")
    asyncio.get_running_loop().create_task(loop._step_down("heartbeat_failed"))


class TestTickLoopDueScenario:
    """JobSpec 09:00 Monday in New York, never run before."""

    @pytest.mark.asyncio
    async def test_runs_once_per_matching_day(self, make_loop, pipeline, seed_user, store, ledger, clock, collaborators):
        """Monday 09:00 runs once; a later Monday tick does not; next Monday does."""
        seed_user("u-1", timezone_name="America/New_York", jobs=[job_dict(time="09:00", days=["Monday"])])
        clock.set(NY_MONDAY_9AM)
        loop = make_loop(pipeline)

        await loop.tick()
        await settle(loop)

        records = ledger.list_recent()
        assert len(records) == 1
        assert records[0].status == ExecutionStatus.COMPLETED
        assert records[0].trigger_source == TriggerSource.SCHEDULE
        assert store.load("u-1").job_spec("daily").last_run == NY_MONDAY_9AM
        assert len(collaborators.summarizer.calls) == 1

        # Same Monday, still inside the grace window
        clock.advance(45)
        await loop.tick()
        await settle(loop)
        assert ledger.count() == 1

        # Next Monday
        clock.set(NY_MONDAY_9AM + timedelta(days=7))
        await tick_as_leader(loop)
        await settle(loop)
        assert ledger.count() == 2
        assert len(collaborators.summarizer.calls) == 2

    @pytest.mark.asyncio
    async def test_not_due_outside_window(self, make_loop, seed_user, ledger, clock):
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM + timedelta(minutes=5))
        loop = make_loop()

        await loop.tick()
        assert ledger.count() == 0
        assert loop.stats.scans_completed == 1

    @pytest.mark.asyncio
    async def test_invalid_timezone_skipped(self, make_loop, seed_user, ledger, clock):
        """A broken job spec is logged and skipped; other users still run."""
        seed_user("u-bad", timezone_name="Mars/Olympus_Mons")
        seed_user("u-good", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        handler = RecordingHandler()
        loop = make_loop(handler)

        await loop.tick()
        await settle(loop)

        assert loop.stats.jobs_invalid == 1
        assert [e.user_id for e in handler.entries] == ["u-good"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "broken",
        [{"word_count": None}, {"word_count": "long"}, {"last_run": "yesterday"}],
    )
    async def test_malformed_job_spec_skipped(self, make_loop, seed_user, clock, broken):
        """A malformed entry is counted and skipped; its siblings and later users still run."""
        seed_user(
            "u-a",
            timezone_name="America/New_York",
            jobs=[job_dict("broken", **broken), job_dict("daily")],
        )
        seed_user("u-good", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        handler = RecordingHandler()
        loop = make_loop(handler)

        await loop.tick()
        await settle(loop)

        assert loop.stats.jobs_invalid == 1
        assert loop.stats.scans_completed == 1
        assert sorted((e.user_id, e.job.id) for e in handler.entries) == [("u-a", "daily"), ("u-good", "daily")]

    @pytest.mark.asyncio
    async def test_failed_run_retried_same_day(self, make_loop, seed_user, ledger, clock):
        """A failed run does not block the next tick inside the window."""
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        handler = RecordingHandler(error=RuntimeError("boom"))
        loop = make_loop(handler)

        await loop.tick()
        await settle(loop)
        clock.advance(30)
        await loop.tick()
        await settle(loop)

        assert len(handler.entries) == 2
        assert all(r.status == ExecutionStatus.FAILED for r in ledger.list_recent())

    @pytest.mark.asyncio
    async def test_stale_running_record_unblocks(self, make_loop, seed_user, ledger, clock):
        """A run stuck in running for longer than the stale window may be picked up again."""
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        stuck = ExecutionRecord(user_id="u-1", job_id="daily", scheduled_date=NY_MONDAY_9AM.date())
        ledger.create_queued(stuck)
        ledger.mark_running(stuck.id)
        handler = RecordingHandler()
        loop = make_loop(handler, due_grace_minutes=30, stale_running_minutes=10)

        clock.advance(minutes=5)
        await loop.tick()
        await settle(loop)
        assert handler.entries == []

        clock.advance(minutes=6)
        await tick_as_leader(loop)
        await settle(loop)
        assert len(handler.entries) == 1


class TestTickLoopBreaker:
    """Test interaction with the circuit breaker."""

    @pytest.mark.asyncio
    async def test_open_breaker_records_rejection(self, make_loop, seed_user, ledger, breaker, clock):
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        trip_breaker(breaker)
        handler = RecordingHandler()
        loop = make_loop(handler)

        await loop.tick()

        [record] = ledger.list_recent()
        assert record.status == ExecutionStatus.FAILED
        assert record.failure_kind == FailureKind.CIRCUIT_OPEN
        assert handler.entries == []
        assert loop.stats.jobs_rejected == 1


class TestTickLoopLeadership:
    """Test lease-gated leadership transitions."""

    @pytest.mark.asyncio
    async def test_becomes_leader(self, make_loop, lease_lock):
        loop = make_loop()
        await loop.tick()
        assert loop.state == LeaderState.LEADING
        assert lease_lock.is_held_by("node-a")

    @pytest.mark.asyncio
    async def test_idle_while_other_holds_lease(self, make_loop, seed_user, ledger, conn, clock):
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        LeaseLock(conn, clock=clock).try_acquire("node-b")
        loop = make_loop()

        await loop.tick()

        assert loop.state == LeaderState.IDLE
        assert ledger.count() == 0
        assert loop.stats.scans_completed == 0

    @pytest.mark.asyncio
    async def test_takes_over_after_expiry(self, make_loop, conn, clock):
        LeaseLock(conn, lease_seconds=300, clock=clock).try_acquire("node-b")
        loop = make_loop()

        await loop.tick()
        assert loop.state == LeaderState.IDLE

        clock.advance(300)
        await loop.tick()
        assert loop.state == LeaderState.LEADING

    @pytest.mark.asyncio
    async def test_lost_lease_steps_down(self, make_loop, lease_lock, conn, clock):
        """Renewal failure moves LEADING → STEPPING_DOWN → IDLE without raising."""
        loop = make_loop()
        await loop.tick()
        lease_lock.force_release("node-a", actor="test")
        LeaseLock(conn, clock=clock).try_acquire("node-b")

        await loop.tick()
        assert loop.state == LeaderState.STEPPING_DOWN

        await loop.tick()
        assert loop.state == LeaderState.IDLE

    @pytest.mark.asyncio
    async def test_heartbeat_failure_steps_down(self, make_loop, lease_lock, conn, clock):
        gate = GateSleep()
        loop = make_loop(sleep=gate)
        await loop.tick()

        clock.advance(10)
        gate.open()
        for _ in range(100):
            await asyncio.sleep(0.01)
            if lease_lock.current_lease().heartbeat_at == clock():
                break
        assert loop.state == LeaderState.LEADING

        lease_lock.force_release("node-a", actor="test")
        LeaseLock(conn, clock=clock).try_acquire("node-b")
        gate.open()
        for _ in range(100):
            if loop.state != LeaderState.LEADING:
                break
            await asyncio.sleep(0.01)

        assert loop.state == LeaderState.STEPPING_DOWN

    @pytest.mark.asyncio
    async def test_lease_lost_mid_scan_abandons_remaining_users(
        self, make_loop, seed_user, store, ledger, lease_lock, conn, clock
    ):
        for user_id in ("u-1", "u-2", "u-3"):
            seed_user(user_id, timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM)
        handler = RecordingHandler()
        loop = make_loop(handler)
        loop.store = LeaseLossStore(store, lambda: lose_lease(loop, lease_lock, conn, clock))

        await loop.tick()
        await settle(loop)

        assert loop.state == LeaderState.STEPPING_DOWN
        assert loop.stats.scans_abandoned == 1
        assert loop.stats.scans_completed == 0
        assert [r.user_id for r in ledger.list_recent()] == ["u-1"]
        assert [e.user_id for e in handler.entries] == ["u-1"]

        await loop.tick()
        assert loop.state == LeaderState.IDLE
        assert ledger.count() == 1

    @pytest.mark.asyncio
    async def test_abandoned_scan_skips_purge(self, make_loop, seed_user, store, ledger, lease_lock, conn, clock):
        old = ExecutionRecord(user_id="u-0", job_id="daily", scheduled_date=clock().date())
        ledger.create_queued(old)
        ledger.mark_failed(old.id, FailureKind.TRANSIENT, "timeout")
        for user_id in ("u-1", "u-2"):
            seed_user(user_id, timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM + timedelta(days=14))
        loop = make_loop(retention_days=7)
        loop.store = LeaseLossStore(store, lambda: lose_lease(loop, lease_lock, conn, clock))

        await loop.tick()

        assert loop.stats.scans_abandoned == 1
        assert ledger.get(old.id) is not None

    @pytest.mark.asyncio
    async def test_stop_releases_lease(self, make_loop, lease_lock):
        loop = make_loop()
        await loop.tick()

        await loop.stop()

        assert lease_lock.current_lease() is None
        assert loop.is_running is False

    @pytest.mark.asyncio
    async def test_health(self, make_loop):
        loop = make_loop()
        await loop.tick()

        health = loop.health().to_dict()
        assert health["healthy"] is True
        assert health["state"] == "leading"
        assert health["holder"] == "node-a"
        assert health["stats"]["tick_count"] == 1

    @pytest.mark.asyncio
    async def test_purges_old_records_when_leading(self, make_loop, ledger, clock):
        old = ExecutionRecord(user_id="u-1", job_id="daily", scheduled_date=clock().date())
        ledger.create_queued(old)
        ledger.mark_failed(old.id, FailureKind.TRANSIENT, "timeout")
        clock.advance(days=8)
        loop = make_loop(retention_days=7)

        await loop.tick()

        assert ledger.get(old.id) is None


class TestManualTrigger:
    """Test operator-triggered runs."""

    @pytest.mark.asyncio
    async def test_trigger_runs_without_setting_last_run(self, make_loop, pipeline, seed_user, store, ledger, clock):
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM - timedelta(hours=2))
        loop = make_loop(pipeline)

        record = await loop.trigger("u-1", "daily", actor="ops@example.com")
        await settle(loop)

        stored = ledger.get(record.id)
        assert stored.trigger_source == TriggerSource.MANUAL
        assert stored.status == ExecutionStatus.COMPLETED
        user = store.load("u-1")
        assert user.job_spec("daily").last_run is None
        assert user.document["summary_history"][0]["trigger"] == "manual"

    @pytest.mark.asyncio
    async def test_scheduled_run_still_happens_after_manual(self, make_loop, pipeline, seed_user, ledger, clock):
        seed_user("u-1", timezone_name="America/New_York")
        clock.set(NY_MONDAY_9AM - timedelta(hours=2))
        loop = make_loop(pipeline)
        await loop.trigger("u-1", "daily", actor="ops")
        await settle(loop)

        clock.set(NY_MONDAY_9AM)
        await loop.tick()
        await settle(loop)

        sources = sorted(r.trigger_source.value for r in ledger.list_recent())
        assert sources == ["manual", "schedule"]

    @pytest.mark.asyncio
    async def test_trigger_unknown_job(self, make_loop, seed_user):
        seed_user("u-1")
        loop = make_loop()
        with pytest.raises(NotFoundError):
            await loop.trigger("u-1", "nope", actor="ops")
        with pytest.raises(NotFoundError):
            await loop.trigger("ghost", "daily", actor="ops")

    @pytest.mark.asyncio
    async def test_trigger_while_active_conflicts(self, make_loop, seed_user):
        seed_user("u-1")
        block = asyncio.Event()
        loop = make_loop(RecordingHandler(block=block))

        await loop.trigger("u-1", "daily", actor="ops")
        with pytest.raises(ConflictError):
            await loop.trigger("u-1", "daily", actor="ops")
        block.set()
        await settle(loop)
