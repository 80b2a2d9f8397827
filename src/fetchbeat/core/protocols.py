"""
Protocols for the store connection and the external collaborators.

The scheduler core only depends on these shapes. The embedding application
supplies concrete collaborators (article retrieval, summarisation, speech
synthesis, history archive, push notifications) through a ``Collaborators``
bundle, usually built by the factory named in
``FetchbeatSettings.collaborators``.

Architecture:
    ::

        ┌─────────────────────── Collaborators ───────────────────────┐
        │ news        : NewsSource          fetch_articles(...)       │
        │ summarizer  : Summarizer          summarize(...)            │
        │ speech      : SpeechSynthesizer?  synthesize(...)           │
        │ archive     : HistoryArchive?     persist_history(...)      │
        │ notifier    : Notifier?           notify_user(...)          │
        └─────────────────────────────────────────────────────────────┘

Tags:
    protocol, collaborators, dependency-injection
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from fetchbeat.core.errors import ConfigError


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous connection interface used by the stores.

    ``execute`` returns the changed-row count so conditional writes can report
    whether their guard matched.
    """

    def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a write statement, return changed rows."""
        ...

    def fetchone(self, sql: str, params: tuple = ()) -> Any:
        """Run a query and return the first row or None."""
        ...

    def fetchall(self, sql: str, params: tuple = ()) -> list:
        """Run a query and return every row."""
        ...

    def executescript(self, script: str) -> None:
        """Execute several statements (DDL)."""
        ...


@dataclass
class Article:
    """A news article as returned by a ``NewsSource``."""

    title: str
    url: str = ""
    source: str = ""
    description: str = ""
    published_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "source": self.source,
            "description": self.description,
            "published_at": self.published_at,
        }


@runtime_checkable
class NewsSource(Protocol):
    async def fetch_articles(
        self,
        topic: str,
        *,
        count: int,
        region: dict[str, str] | None = None,
        sources: list[str] | None = None,
    ) -> list[Article]:
        ...


@runtime_checkable
class Summarizer(Protocol):
    async def summarize(
        self,
        topic: str,
        articles: list[Article],
        *,
        word_count: int,
        uplifting_only: bool = False,
        user: dict[str, Any] | None = None,
    ) -> str:
        ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, *, voice: str, speed: float) -> str | None:
        """Return a URL for the rendered audio, or None."""
        ...


@runtime_checkable
class HistoryArchive(Protocol):
    async def persist_history(self, user_id: str, entry: dict[str, Any]) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def notify_user(self, user_id: str, title: str, body: str) -> None:
        ...


@dataclass
class Collaborators:
    """External services the summary pipeline calls."""

    news: NewsSource
    summarizer: Summarizer
    speech: SpeechSynthesizer | None = None
    archive: HistoryArchive | None = None
    notifier: Notifier | None = None


def load_collaborators(path: str) -> Collaborators:
    """Import ``package.module:factory`` and call it to build the bundle.

    Raises:
        ConfigError: If the path is malformed, the import fails, or the
            factory returns something other than ``Collaborators``.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Collaborators path must look like 'module:factory', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import collaborators module {module_name!r}", cause=exc) from exc
    factory = getattr(module, attr, None)
    if factory is None:
        raise ConfigError(f"{module_name!r} has no attribute {attr!r}")
    bundle = factory() if callable(factory) else factory
    if not isinstance(bundle, Collaborators):
        raise ConfigError(f"{path!r} did not produce a Collaborators instance")
    return bundle


__all__ = [
    "Article",
    "Collaborators",
    "Connection",
    "HistoryArchive",
    "NewsSource",
    "Notifier",
    "SpeechSynthesizer",
    "Summarizer",
    "load_collaborators",
]
