"""Pytest fixtures for scheduling tests."""

from __future__ import annotations

import pytest
import pytest_asyncio

from fetchbeat.core.scheduling import LeaseLock, TickLoop
from fetchbeat.execution.pipeline import SummaryPipeline
from fetchbeat.execution.queue import ExecutionQueue
from tests._support.fakes import GateSleep, ManualBackend, RecordingHandler, make_collaborators


@pytest.fixture
def lease_lock(conn, clock):
    return LeaseLock(conn, lease_seconds=300, clock=clock)


@pytest.fixture
def collaborators():
    return make_collaborators()


@pytest.fixture
def pipeline(collaborators, store, breaker, clock):
    return SummaryPipeline(collaborators, store, breaker, call_timeout=5, save_base_delay=0, clock=clock)


@pytest_asyncio.fixture
async def make_loop(store, ledger, breaker, lease_lock, clock):
    """Factory for started TickLoops on a ManualBackend. Stopped on teardown."""
    loops: list[TickLoop] = []

    def _make(handler=None, *, holder: str = "node-a", sleep=None, **kwargs) -> TickLoop:
        handler = handler or RecordingHandler()
        queue = ExecutionQueue(handler, ledger, max_concurrency=kwargs.pop("max_concurrency", 3), clock=clock)
        loop = TickLoop(
            backend=ManualBackend(),
            lease=lease_lock,
            store=store,
            ledger=ledger,
            queue=queue,
            breaker=breaker,
            holder=holder,
            lease_seconds=300,
            interval_seconds=60,
            renew_timeout=5,
            clock=clock,
            sleep=sleep or GateSleep(),
            **kwargs,
        )
        loop.start()
        loops.append(loop)
        return loop

    yield _make

    for loop in loops:
        await loop.stop(drain_timeout=2)


