"""Tests for due-job evaluation."""

from datetime import datetime, timezone

import pytest

from fetchbeat.core.errors import ValidationError
from fetchbeat.core.models import JobSpec
from fetchbeat.core.scheduling.due import evaluate, is_due, local_date_for, parse_time


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def job(**kwargs) -> JobSpec:
    defaults = {"id": "daily", "time": "09:00", "days": ["Monday"], "topics": ["technology"]}
    defaults.update(kwargs)
    return JobSpec(**defaults)


class TestDueWindow:
    """Test the time-of-day window."""

    def test_due_at_scheduled_minute(self):
        decision = evaluate(job(), "UTC", utc(2024, 1, 1, 9, 0))
        assert decision.due is True
        assert decision.reason == "due"
        assert decision.local_date.isoformat() == "2024-01-01"

    def test_due_within_grace(self):
        assert is_due(job(), "UTC", utc(2024, 1, 1, 9, 1, 59)) is True

    def test_not_due_after_grace(self):
        decision = evaluate(job(), "UTC", utc(2024, 1, 1, 9, 2))
        assert decision.due is False
        assert decision.reason == "outside_window"

    def test_not_due_before_time(self):
        """The window is late-only: a tick just before the minute does not fire."""
        assert is_due(job(), "UTC", utc(2024, 1, 1, 8, 59, 59)) is False

    def test_wider_grace(self):
        assert is_due(job(), "UTC", utc(2024, 1, 1, 9, 5), grace_minutes=5) is True


class TestDueCalendar:
    """Test weekday and per-day idempotency rules."""

    def test_wrong_day(self):
        decision = evaluate(job(), "UTC", utc(2024, 1, 2, 9, 0))
        assert decision.reason == "wrong_day"

    def test_empty_days_never_due(self):
        decision = evaluate(job(days=[]), "UTC", utc(2024, 1, 1, 9, 0))
        assert decision.due is False
        assert decision.reason == "no_days"

    def test_disabled(self):
        assert evaluate(job(enabled=False), "UTC", utc(2024, 1, 1, 9, 0)).reason == "disabled"

    def test_already_ran_today(self):
        ran = job(last_run=utc(2024, 1, 1, 9, 0, 30))
        decision = evaluate(ran, "UTC", utc(2024, 1, 1, 9, 1))
        assert decision.reason == "already_ran_today"

    def test_ran_last_week_is_due(self):
        ran = job(last_run=utc(2023, 12, 25, 9, 0))
        assert is_due(ran, "UTC", utc(2024, 1, 1, 9, 0)) is True


class TestDueTimezones:
    """Test evaluation in the job's local time."""

    def test_local_time_not_utc(self):
        """09:00 in New York is 14:00 UTC in January."""
        tz = "America/New_York"
        assert is_due(job(), tz, utc(2024, 1, 1, 14, 0)) is True
        assert is_due(job(), tz, utc(2024, 1, 1, 9, 0)) is False

    def test_local_weekday(self):
        """Monday 09:00 in Tokyo is still Sunday in UTC."""
        tz = "Asia/Tokyo"
        now = utc(2024, 1, 1, 0, 0)  # 09:00 JST Monday
        decision = evaluate(job(), tz, now)
        assert decision.due is True
        assert decision.local_date.isoformat() == "2024-01-01"

    def test_last_run_compared_in_job_timezone(self):
        """A run at 23:30 UTC Sunday is Monday morning in Tokyo."""
        tz = "Asia/Tokyo"
        ran = job(time="09:00", last_run=utc(2023, 12, 31, 23, 30))
        assert evaluate(ran, tz, utc(2024, 1, 1, 0, 0)).reason == "already_ran_today"

    def test_timezone_edit_mid_day_uses_new_zone(self):
        """Last write wins: after a timezone change the job follows the new zone."""
        ran_in_utc = job(last_run=utc(2024, 1, 1, 9, 0))
        # Moving to Los Angeles: 09:00 PST is 17:00 UTC, same local date.
        assert evaluate(ran_in_utc, "America/Los_Angeles", utc(2024, 1, 1, 17, 0)).reason == "already_ran_today"
        # Moving to Tokyo: the UTC run was Monday 18:00 JST, Tuesday 09:00 JST is due.
        ran_tuesday = job(days=["Tuesday"], last_run=utc(2024, 1, 1, 9, 0))
        assert is_due(ran_tuesday, "Asia/Tokyo", utc(2024, 1, 2, 0, 0)) is True

    def test_unknown_timezone_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            evaluate(job(), "Mars/Olympus", utc(2024, 1, 1, 9, 0))
        assert exc_info.value.field == "timezone"

    def test_local_date_for(self):
        assert local_date_for(utc(2024, 1, 1, 23, 30), "Asia/Tokyo").isoformat() == "2024-01-02"


class TestParseTime:
    @pytest.mark.parametrize("value", ["9", "25:00", "ab:cd", "", "09:60"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_time(value)

    def test_valid(self):
        parsed = parse_time("07:05")
        assert (parsed.hour, parsed.minute) == (7, 5)

    def test_malformed_job_time_raises_on_evaluate(self):
        with pytest.raises(ValidationError):
            evaluate(job(time="later"), "UTC", utc(2024, 1, 1, 9, 0))
