"""
Shared pytest fixtures for fetchbeat tests.

This module provides:
- An in-memory SQLite connection with the fetchbeat schema applied
- A controllable clock (``FakeClock``) shared by every component
- Store, ledger and breaker fixtures wired to that clock
- ``seed_user`` for inserting user documents with scheduled summaries

Usage:
    from tests._support.builders import job_dict

    def test_something(store, seed_user, clock):
        seed_user("u-1", jobs=[job_dict(time="09:00", days=["Monday"])])
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from fetchbeat.core.schema import apply_schema
from fetchbeat.core.sqlite_conn import SqliteConnection
from fetchbeat.core.user_store import UserStore
from fetchbeat.execution.circuit_breaker import CircuitBreaker
from fetchbeat.execution.ledger import ExecutionLedger
from tests._support.builders import MONDAY_NOON_UTC, job_dict
from tests._support.fakes import FakeClock


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY_NOON_UTC)


@pytest.fixture
def conn():
    """In-memory SQLite connection with schema."""
    connection = SqliteConnection(":memory:")
    apply_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(conn, clock) -> UserStore:
    return UserStore(conn, clock=clock)


@pytest.fixture
def ledger(conn, clock) -> ExecutionLedger:
    return ExecutionLedger(conn, clock=clock)


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(failure_threshold=3, cool_down=600, clock=clock)


@pytest.fixture
def seed_user(store) -> Callable[..., Any]:
    """Insert a user document. Returns the created ``UserState``."""

    def _seed(
        user_id: str = "u-1",
        *,
        jobs: list[dict[str, Any]] | None = None,
        timezone_name: str = "UTC",
        **document: Any,
    ):
        doc = {
            "display_name": user_id,
            "preferences": {"timezone": timezone_name},
            "scheduled_summaries": [job_dict()] if jobs is None else jobs,
            "summary_history": [],
            "daily_usage_count": 0,
            **document,
        }
        return store.create(user_id, doc)

    return _seed
