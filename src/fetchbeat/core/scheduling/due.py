"""
Due-job evaluation in the job's local time.

A job spec is due at instant ``now`` when, converted to its timezone:

- the local weekday is one of ``days``,
- the local time is between ``time`` and ``time + grace_minutes``
  (late-only, inclusive; a tick slightly after the minute still counts),
- ``last_run`` does not fall on the same local calendar date.

Everything here is pure: no store access, no clock. The tick loop passes in
``now`` and acts on the returned ``DueDecision``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fetchbeat.core.errors import ValidationError
from fetchbeat.core.models import WEEKDAYS, JobSpec


@dataclass(frozen=True)
class DueDecision:
    due: bool
    reason: str
    local_date: date | None = None


def parse_time(value: str) -> time:
    """Parse ``"HH:MM"`` (24-hour).

    Raises:
        ValidationError: If the value is not a valid wall-clock time.
    """
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM", field="time", value=value) from exc


def resolve_zone(name: str) -> ZoneInfo:
    """Look up an IANA timezone.

    Raises:
        ValidationError: If the zone is unknown.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone {name!r}", field="timezone", value=name) from exc


def local_date_for(now: datetime, timezone: str) -> date:
    """Calendar date of ``now`` in ``timezone``."""
    return now.astimezone(resolve_zone(timezone)).date()


def evaluate(job: JobSpec, timezone: str, now: datetime, *, grace_minutes: int = 1) -> DueDecision:
    """Decide whether ``job`` should run at ``now``.

    Raises:
        ValidationError: Malformed ``time`` or unknown ``timezone``. The caller
            logs and skips the job.
    """
    if not job.enabled:
        return DueDecision(False, "disabled")
    if not job.days:
        return DueDecision(False, "no_days")

    scheduled = parse_time(job.time)
    local_now = now.astimezone(resolve_zone(timezone))
    local_date = local_now.date()

    if WEEKDAYS[local_now.weekday()] not in job.days:
        return DueDecision(False, "wrong_day", local_date)

    now_minutes = local_now.hour * 60 + local_now.minute
    scheduled_minutes = scheduled.hour * 60 + scheduled.minute
    if not 0 <= now_minutes - scheduled_minutes <= grace_minutes:
        return DueDecision(False, "outside_window", local_date)

    if job.last_run is not None and job.last_run.astimezone(local_now.tzinfo).date() == local_date:
        return DueDecision(False, "already_ran_today", local_date)

    return DueDecision(True, "due", local_date)


def is_due(job: JobSpec, timezone: str, now: datetime, *, grace_minutes: int = 1) -> bool:
    return evaluate(job, timezone, now, grace_minutes=grace_minutes).due


__all__ = ["DueDecision", "evaluate", "is_due", "local_date_for", "parse_time", "resolve_zone"]
