"""
Domain models for scheduled summaries and the user documents they live in.

A user's preference document is owned by many subsystems. The scheduler only
reads the job specs (``scheduled_summaries``) and a handful of presentation
preferences, and only writes the fields listed in ``SCHEDULER_OWNED_FIELDS``.

Document layout (keys this package reads)::

    {
      "email": "...",
      "is_premium": false,
      "preferences": {"timezone": "America/New_York"},
      "location": "Boston, MA",
      "selected_voice": "alloy",
      "playback_rate": 1.0,
      "uplifting_news_only": false,
      "selected_news_sources": ["bbc-news"],
      "custom_topics": ["Rowing"],
      "scheduled_summaries": [JobSpec, ...],
      "summary_history": [...],
      "daily_usage_count": 0,
      "last_usage_date": null
    }
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fetchbeat.core.clock import parse_iso, to_iso
from fetchbeat.core.errors import ValidationError

SCHEDULER_OWNED_FIELDS: frozenset[str] = frozenset(
    {"scheduled_summaries", "summary_history", "daily_usage_count", "last_usage_date"}
)

WEEKDAYS: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

VOICES: tuple[str, ...] = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
DEFAULT_VOICE = "alloy"


@dataclass
class JobSpec:
    """One recurring scheduled summary, embedded in a user document.

    Attributes:
        id: Identifier unique within the user's document
        time: Local wall-clock time ``"HH:MM"``
        days: Weekday names on which the job runs; empty means never
        timezone: IANA zone overriding the user's preference timezone
        last_run: Instant of the last scheduled execution, if any
    """

    id: str
    name: str = ""
    time: str = "08:00"
    days: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    custom_topics: list[str] = field(default_factory=list)
    word_count: int = 200
    uplifting_only: bool = False
    enabled: bool = True
    timezone: str | None = None
    created_at: datetime | None = None
    last_run: datetime | None = None

    @property
    def all_topics(self) -> list[str]:
        """Built-in and custom topics, in order, without duplicates."""
        seen: list[str] = []
        for topic in [*self.topics, *self.custom_topics]:
            if topic and topic not in seen:
                seen.append(topic)
        return seen

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobSpec:
        """Build a spec from a stored entry.

        Raises:
            ValidationError: A field has the wrong type or an unparseable value.
        """
        try:
            return cls(
                id=str(data["id"]),
                name=data.get("name", ""),
                time=data.get("time", "08:00"),
                days=list(data.get("days") or []),
                topics=list(data.get("topics") or []),
                custom_topics=list(data.get("custom_topics") or []),
                word_count=int(data.get("word_count", 200)),
                uplifting_only=bool(data.get("uplifting_only", False)),
                enabled=bool(data.get("enabled", True)),
                timezone=data.get("timezone"),
                created_at=parse_iso(data.get("created_at")),
                last_run=parse_iso(data.get("last_run")),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ValidationError(
                f"Malformed job spec {data.get('id')!r}: {e}", value=data.get("id")
            ) from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "time": self.time,
            "days": list(self.days),
            "topics": list(self.topics),
            "custom_topics": list(self.custom_topics),
            "word_count": self.word_count,
            "uplifting_only": self.uplifting_only,
            "enabled": self.enabled,
            "timezone": self.timezone,
            "created_at": to_iso(self.created_at) if self.created_at else None,
            "last_run": to_iso(self.last_run) if self.last_run else None,
        }


@dataclass
class UserState:
    """A user document together with its optimistic-concurrency version."""

    user_id: str
    version: int
    document: dict[str, Any]

    @property
    def timezone(self) -> str:
        """Preference timezone, ``UTC`` when unset."""
        prefs = self.document.get("preferences") or {}
        return prefs.get("timezone") or "UTC"

    def raw_job_specs(self) -> list[dict[str, Any]]:
        """Stored ``scheduled_summaries`` entries; entries without an id are ignored."""
        return [
            raw
            for raw in self.document.get("scheduled_summaries") or []
            if isinstance(raw, dict) and raw.get("id")
        ]

    def job_specs(self) -> list[JobSpec]:
        """Parse every entry. Raises ``ValidationError`` on the first malformed one."""
        return [JobSpec.from_dict(raw) for raw in self.raw_job_specs()]

    def job_spec(self, job_id: str) -> JobSpec | None:
        """Parse only the entry with ``job_id``; malformed siblings are not read."""
        for raw in self.raw_job_specs():
            if str(raw["id"]) == job_id:
                return JobSpec.from_dict(raw)
        return None

    def timezone_for(self, spec: JobSpec) -> str:
        return spec.timezone or self.timezone

    def copy_document(self) -> dict[str, Any]:
        return copy.deepcopy(self.document)


__all__ = [
    "DEFAULT_VOICE",
    "JobSpec",
    "SCHEDULER_OWNED_FIELDS",
    "UserState",
    "VOICES",
    "WEEKDAYS",
]
