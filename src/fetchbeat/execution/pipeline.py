"""
Scheduled summary pipeline: the work a queue worker performs for one job.

    Pipeline::

        load user ──► topics? ──no──► record last_run, done (skipped)
                         │yes
                         ▼
        breaker.call_async(generate)
            per topic: fetch_articles → summarize   (per-topic errors tolerated)
            every topic failed ──► ExternalServiceError
            synthesize audio                        (failure → no audio)
                         │
                         ▼
        save_with_retry(JobRunMutator)  last_run + history + usage
                         │
                         ▼
        archive.persist_history, notifier.notify_user (audio only)
                                         best effort, logged on failure

Every collaborator call is bounded by ``call_timeout``. A timeout surfaces as
``CallTimeoutError`` and counts like any other transient failure.

``last_run`` is written for scheduled runs that complete or fail with a
non-retryable error (invalid job spec), so a bad spec is not retried every
tick. Transient failures leave it untouched. Manual runs never write it.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from fetchbeat.core.clock import Clock, to_iso, utcnow
from fetchbeat.core.errors import CallTimeoutError, ExternalServiceError, ValidationError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.models import DEFAULT_VOICE, VOICES, JobSpec, UserState
from fetchbeat.core.protocols import Article, Collaborators
from fetchbeat.core.user_store import UserStore
from fetchbeat.execution.circuit_breaker import CircuitBreaker
from fetchbeat.execution.models import TriggerSource
from fetchbeat.execution.persistence import JobRunMutator, save_with_retry
from fetchbeat.execution.queue import QueueEntry
from fetchbeat.execution.retry import ExponentialBackoff

T = TypeVar("T")

logger = get_logger(__name__)

SPEECH_MAX_CHARS = 4090
HISTORY_SOURCES = 10


def articles_per_topic(word_count: int) -> int:
    """Longer summaries read more articles per topic."""
    if word_count >= 1500:
        return 20
    if word_count >= 800:
        return 12
    return 6


def length_category(word_count: int) -> str:
    if word_count >= 1000:
        return "long"
    if word_count >= 800:
        return "medium"
    return "short"


def summary_title(topics: list[str]) -> str:
    if len(topics) == 1:
        topic = topics[0]
        return f"{topic[:1].upper()}{topic[1:]} Summary"
    if len(topics) > 1:
        return "Mixed Summary"
    return "Scheduled Fetch"


def parse_location(location: Any) -> dict[str, str] | None:
    """Turn ``"City, Region"`` into the region hint passed to the news source."""
    if not isinstance(location, str) or not location.strip():
        return None
    parts = [part.strip() for part in location.split(",")]
    return {
        "city": parts[0] if parts else "",
        "region": parts[1] if len(parts) > 1 else "",
        "country": "US",
        "country_code": "US",
    }


_QUOTES = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})


def speech_text(text: str, limit: int = SPEECH_MAX_CHARS) -> str:
    """Normalise quotes and whitespace and cap the length for synthesis."""
    cleaned = re.sub(r"\s+", " ", text.translate(_QUOTES)).strip()
    if len(cleaned) > limit:
        cleaned = cleaned[: limit - 3] + "..."
    return cleaned


@dataclass
class GeneratedSummary:
    title: str
    text: str
    topics: list[str]
    length: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    audio_url: str | None = None
    failed_topics: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    status: str
    history_id: str | None = None
    summary: GeneratedSummary | None = None


class SummaryPipeline:
    """Queue handler that produces and stores one scheduled summary."""

    def __init__(
        self,
        collaborators: Collaborators,
        store: UserStore,
        breaker: CircuitBreaker,
        *,
        call_timeout: float = 60.0,
        save_max_retries: int = 5,
        save_base_delay: float = 0.1,
        history_limit: int = 50,
        clock: Clock | None = None,
    ) -> None:
        self.collaborators = collaborators
        self.store = store
        self.breaker = breaker
        self.call_timeout = call_timeout
        self.save_max_retries = save_max_retries
        self.save_base_delay = save_base_delay
        self.history_limit = history_limit
        self._clock = clock or utcnow

    async def __call__(self, entry: QueueEntry) -> PipelineResult:
        return await self.run(entry)

    async def run(self, entry: QueueEntry) -> PipelineResult:
        state = self.store.load(entry.user_id)
        job = state.job_spec(entry.job.id)
        if job is None:
            raise ValidationError(f"Job {entry.job.id} no longer exists", field="job_id", value=entry.job.id)

        scheduled = entry.trigger_source == TriggerSource.SCHEDULE
        topics = job.all_topics
        if not topics:
            logger.info("pipeline.no_topics")
            if scheduled:
                await self._save(entry.user_id, JobRunMutator(job.id, last_run=self._clock()))
            return PipelineResult(status="skipped")

        try:
            summary = await self.breaker.call_async(self._generate, state, job)
        except ValidationError:
            if scheduled:
                await self._save(entry.user_id, JobRunMutator(job.id, last_run=self._clock()))
            raise

        now = self._clock()
        history_entry = {
            "id": f"scheduled-{int(now.timestamp() * 1000)}",
            "title": summary.title,
            "summary": summary.text,
            "topics": summary.topics,
            "length": summary.length,
            "timestamp": to_iso(now),
            "audio_url": summary.audio_url,
            "sources": summary.sources[:HISTORY_SOURCES],
            "trigger": entry.trigger_source.value,
            "job_id": job.id,
        }
        mutator = JobRunMutator(
            job.id,
            last_run=now if scheduled else None,
            history_entry=history_entry,
            history_limit=self.history_limit,
            usage_date=to_iso(now),
        )
        await self._save(entry.user_id, mutator)
        logger.info(
            "pipeline.summary_saved",
            title=summary.title,
            has_audio=summary.audio_url is not None,
            failed_topics=summary.failed_topics,
        )

        await self._archive(entry.user_id, history_entry)
        if summary.audio_url:
            await self._notify(entry.user_id, summary.title)
        return PipelineResult(status="completed", history_id=history_entry["id"], summary=summary)

    # ── External phase (runs inside the circuit breaker) ─────────────

    async def _generate(self, state: UserState, job: JobSpec) -> GeneratedSummary:
        doc = state.document
        topics = job.all_topics
        count = articles_per_topic(job.word_count)
        region = parse_location(doc.get("location"))
        sources = list(doc.get("selected_news_sources") or []) if doc.get("is_premium") else None
        uplifting = job.uplifting_only or bool(doc.get("uplifting_news_only"))

        pieces: list[str] = []
        items: list[dict[str, Any]] = []
        failed: list[str] = []
        last_error: Exception | None = None

        for topic in topics:
            try:
                articles: list[Article] = await self._bounded(
                    self.collaborators.news.fetch_articles(topic, count=count, region=region, sources=sources),
                    "fetch_articles",
                )
                text = await self._bounded(
                    self.collaborators.summarizer.summarize(
                        topic, articles, word_count=job.word_count, uplifting_only=uplifting, user=doc
                    ),
                    "summarize",
                )
            except Exception as e:
                failed.append(topic)
                last_error = e
                logger.warning("pipeline.topic_failed", topic=topic, error=str(e), error_type=e.__class__.__name__)
                continue
            if text:
                pieces.append(text.strip())
            items.extend(
                {
                    "title": article.title,
                    "summary": re.sub(r"\s+", " ", article.description or article.title).strip()[:180],
                    "source": article.source,
                    "url": article.url,
                    "topic": topic,
                }
                for article in articles
            )

        if len(failed) == len(topics):
            raise ExternalServiceError(
                f"Every topic failed ({len(topics)})", cause=last_error
            ).with_context(user_id=state.user_id, job_id=job.id)
        if not pieces:
            raise ExternalServiceError("Summarizer returned no content").with_context(
                user_id=state.user_id, job_id=job.id
            )

        text = " ".join(pieces)
        summary = GeneratedSummary(
            title=summary_title(topics),
            text=text,
            topics=topics,
            length=length_category(job.word_count),
            sources=items,
            failed_topics=failed,
        )
        summary.audio_url = await self._synthesize(doc, text)
        return summary

    async def _synthesize(self, doc: dict[str, Any], text: str) -> str | None:
        speech = self.collaborators.speech
        if speech is None:
            return None
        voice = str(doc.get("selected_voice") or DEFAULT_VOICE).lower()
        if voice not in VOICES:
            voice = DEFAULT_VOICE
        speed = float(doc.get("playback_rate") or 1.0)
        try:
            return await self._bounded(speech.synthesize(speech_text(text), voice=voice, speed=speed), "synthesize")
        except Exception as e:
            logger.warning("pipeline.audio_failed", error=str(e), error_type=e.__class__.__name__)
            return None

    async def _bounded(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise CallTimeoutError(
                f"{operation} exceeded {self.call_timeout}s", timeout=self.call_timeout, cause=exc
            ).with_context(operation=operation) from exc

    # ── Persistence and side effects ─────────────────────────────────

    async def _save(self, user_id: str, mutator: JobRunMutator) -> UserState:
        return await save_with_retry(
            self.store,
            user_id,
            mutator,
            max_retries=self.save_max_retries,
            strategy=ExponentialBackoff(base_delay=self.save_base_delay),
        )

    async def _archive(self, user_id: str, entry: dict[str, Any]) -> None:
        archive = self.collaborators.archive
        if archive is None:
            return
        try:
            await self._bounded(archive.persist_history(user_id, entry), "persist_history")
        except Exception as e:
            logger.warning("pipeline.archive_failed", error=str(e))

    async def _notify(self, user_id: str, title: str) -> None:
        notifier = self.collaborators.notifier
        if notifier is None:
            return
        try:
            await self._bounded(
                notifier.notify_user(user_id, "Daily Fetch is Ready", f"{title} is ready to listen!"),
                "notify_user",
            )
        except Exception as e:
            logger.warning("pipeline.notify_failed", error=str(e))


__all__ = [
    "GeneratedSummary",
    "PipelineResult",
    "SummaryPipeline",
    "articles_per_topic",
    "length_category",
    "parse_location",
    "speech_text",
    "summary_title",
]
