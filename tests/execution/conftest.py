"""Pytest fixtures for execution tests."""

from __future__ import annotations

import pytest

from fetchbeat.execution.pipeline import SummaryPipeline
from tests._support.fakes import make_collaborators


@pytest.fixture
def make_pipeline(store, breaker, clock):
    """Build a SummaryPipeline over fake collaborators; overrides replace single fakes."""

    def _make(*, call_timeout: float = 5, **overrides) -> SummaryPipeline:
        collaborators = make_collaborators(**overrides)
        return SummaryPipeline(
            collaborators,
            store,
            breaker,
            call_timeout=call_timeout,
            save_base_delay=0,
            clock=clock,
        )

    return _make
