"""Time helpers.

Every component takes an optional ``clock`` callable so tests can drive time
explicitly. Timestamps are stored as fixed-width ISO-8601 UTC strings, which
sort lexicographically in the same order as the instants they encode.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialise an aware datetime as a fixed-width UTC ISO string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO string; naive values are treated as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = ["Clock", "parse_iso", "to_iso", "utcnow"]
