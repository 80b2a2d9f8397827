"""Pytest fixtures for admin API tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fetchbeat.api import create_app
from fetchbeat.core.settings import FetchbeatSettings
from fetchbeat.runtime import create_runtime
from tests._support.fakes import make_collaborators

TOKEN = "s3cret-token"
OPERATOR = "ops@example.com"


@pytest.fixture
def api_settings() -> FetchbeatSettings:
    return FetchbeatSettings(
        database_path=":memory:",
        instance_id="api-node",
        admin_tokens={TOKEN: OPERATOR},
        failure_threshold=3,
        cool_down_seconds=600,
    )


@pytest.fixture
def runtime(api_settings, conn, clock):
    return create_runtime(api_settings, collaborators=make_collaborators(), conn=conn, clock=clock)


@pytest.fixture
def client(runtime):
    """Authenticated client; the tick loop is not started."""
    app = create_app(runtime=runtime, start_scheduler=False)
    with TestClient(app, headers={"Authorization": f"Bearer {TOKEN}"}) as test_client:
        yield test_client


@pytest.fixture
def anonymous(runtime):
    app = create_app(runtime=runtime, start_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client
