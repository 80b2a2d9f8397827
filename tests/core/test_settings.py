"""Tests for FetchbeatSettings."""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from fetchbeat.core.settings import FetchbeatSettings, default_instance_id


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Run each test away from any real .env and FETCHBEAT_* variables."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("FETCHBEAT_"):
            monkeypatch.delenv(key)


class TestSettingsDefaults:
    def test_defaults(self):
        settings = FetchbeatSettings()
        assert settings.lease_seconds == 300
        assert settings.heartbeat_interval_seconds == 100
        assert settings.max_concurrency == 3
        assert settings.failure_threshold == 5
        assert settings.cool_down_seconds == 1800
        assert settings.save_max_retries == 5
        assert settings.admin_tokens == {}

    def test_instance_ids_are_unique(self):
        assert default_instance_id() != default_instance_id()
        assert FetchbeatSettings().instance_id != FetchbeatSettings().instance_id


class TestSettingsEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("FETCHBEAT_MAX_CONCURRENCY", "7")
        monkeypatch.setenv("FETCHBEAT_INSTANCE_ID", "web-1")
        monkeypatch.setenv("FETCHBEAT_LOG_LEVEL", "debug")

        settings = FetchbeatSettings()

        assert settings.max_concurrency == 7
        assert settings.instance_id == "web-1"
        assert settings.log_level == "DEBUG"

    def test_admin_tokens_from_json(self, monkeypatch):
        monkeypatch.setenv("FETCHBEAT_ADMIN_TOKENS", '{"s3cret": "ops@example.com"}')
        assert FetchbeatSettings().admin_tokens == {"s3cret": "ops@example.com"}

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("FETCHBEAT_DATABASE_PATH=/data/fleet.db\n")
        assert FetchbeatSettings().database_path == "/data/fleet.db"


class TestSettingsValidation:
    def test_renew_timeout_must_fit_heartbeat(self):
        with pytest.raises(ValidationError):
            FetchbeatSettings(lease_seconds=12, renew_timeout_seconds=5)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_concurrency", 0),
            ("failure_threshold", 0),
            ("lease_seconds", 0),
            ("due_grace_minutes", 60),
            ("save_max_retries", -1),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            FetchbeatSettings(**{field: value})
