"""Tests for the scheduled summary pipeline."""

from __future__ import annotations

import pytest

from fetchbeat.core.errors import CallTimeoutError, CircuitOpenError, ExternalServiceError, ValidationError
from fetchbeat.execution.circuit_breaker import CircuitState
from fetchbeat.execution.models import TriggerSource
from fetchbeat.execution.pipeline import (
    articles_per_topic,
    length_category,
    parse_location,
    speech_text,
    summary_title,
)
from tests._support.builders import job_dict, queued_entry
from tests._support.fakes import FakeArchive, FakeNews, FakeSpeech, FakeSummarizer, trip_breaker


class TestPipelineHelpers:
    @pytest.mark.parametrize("words, expected", [(100, 6), (800, 12), (1499, 12), (1500, 20)])
    def test_articles_per_topic(self, words, expected):
        assert articles_per_topic(words) == expected

    @pytest.mark.parametrize("words, expected", [(200, "short"), (800, "medium"), (1000, "long")])
    def test_length_category(self, words, expected):
        assert length_category(words) == expected

    def test_summary_title(self):
        assert summary_title(["technology"]) == "Technology Summary"
        assert summary_title(["technology", "sports"]) == "Mixed Summary"
        assert summary_title([]) == "Scheduled Fetch"

    def test_parse_location(self):
        assert parse_location("Boston, MA") == {
            "city": "Boston",
            "region": "MA",
            "country": "US",
            "country_code": "US",
        }
        assert parse_location("") is None
        assert parse_location(None) is None

    def test_speech_text(self):
        assert speech_text("It’s   “fine”\n") == "It's \"fine\""
        assert speech_text("a" * 20, limit=10) == "aaaaaaa..."


class TestPipelineRun:
    """Test a single scheduled run end to end against fakes."""

    @pytest.mark.asyncio
    async def test_completed_run_records_everything(self, make_pipeline, store, seed_user, ledger, clock):
        seed_user("u-1", jobs=[job_dict(topics=["technology", "science"])], location="Boston, MA")
        archive = FakeArchive()
        pipeline = make_pipeline(archive=archive)
        notifier = pipeline.collaborators.notifier

        result = await pipeline.run(queued_entry(ledger, "u-1"))

        assert result.status == "completed"
        assert result.summary.title == "Mixed Summary"
        assert result.summary.audio_url == "https://audio.example/fetch.mp3"
        doc = store.load("u-1").document
        assert doc["scheduled_summaries"][0]["last_run"] is not None
        assert doc["summary_history"][0]["id"] == result.history_id
        assert doc["summary_history"][0]["topics"] == ["technology", "science"]
        assert doc["daily_usage_count"] == 1
        assert archive.entries[0][0] == "u-1"
        assert notifier.sent == [("u-1", "Daily Fetch is Ready", "Mixed Summary is ready to listen!")]
        assert pipeline.collaborators.news.calls[0]["region"]["city"] == "Boston"

    @pytest.mark.asyncio
    async def test_no_topics_is_skipped(self, make_pipeline, store, seed_user, ledger):
        seed_user("u-1", jobs=[job_dict(topics=[])])
        pipeline = make_pipeline()

        result = await pipeline.run(queued_entry(ledger, "u-1", job=job_dict(topics=[])))

        assert result.status == "skipped"
        assert pipeline.collaborators.news.calls == []
        doc = store.load("u-1").document
        assert doc["scheduled_summaries"][0]["last_run"] is not None
        assert doc["summary_history"] == []

    @pytest.mark.asyncio
    async def test_one_topic_failing_is_tolerated(self, make_pipeline, seed_user, ledger):
        seed_user("u-1", jobs=[job_dict(topics=["technology", "sports"])])
        pipeline = make_pipeline(news=FakeNews(fail_topics={"sports"}))

        result = await pipeline.run(queued_entry(ledger, "u-1"))

        assert result.status == "completed"
        assert result.summary.failed_topics == ["sports"]

    @pytest.mark.asyncio
    async def test_every_topic_failing_raises(self, make_pipeline, store, seed_user, ledger, breaker):
        seed_user("u-1")
        pipeline = make_pipeline(news=FakeNews(fail_topics={"technology"}))

        with pytest.raises(ExternalServiceError):
            await pipeline.run(queued_entry(ledger, "u-1"))

        assert breaker.failure_count == 1
        assert store.load("u-1").document["scheduled_summaries"][0]["last_run"] is None

    @pytest.mark.asyncio
    async def test_empty_summaries_raise(self, make_pipeline, seed_user, ledger):
        seed_user("u-1")
        pipeline = make_pipeline(summarizer=FakeSummarizer(text=""))

        with pytest.raises(ExternalServiceError):
            await pipeline.run(queued_entry(ledger, "u-1"))

    @pytest.mark.asyncio
    async def test_speech_failure_means_no_audio_and_no_notification(self, make_pipeline, seed_user, ledger):
        seed_user("u-1")
        pipeline = make_pipeline(speech=FakeSpeech(fail=True))

        result = await pipeline.run(queued_entry(ledger, "u-1"))

        assert result.status == "completed"
        assert result.summary.audio_url is None
        assert pipeline.collaborators.notifier.sent == []

    @pytest.mark.asyncio
    async def test_archive_failure_is_not_fatal(self, make_pipeline, seed_user, ledger):
        seed_user("u-1")
        pipeline = make_pipeline(archive=FakeArchive(fail=True))

        result = await pipeline.run(queued_entry(ledger, "u-1"))

        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_unknown_voice_falls_back(self, make_pipeline, seed_user, ledger):
        seed_user("u-1", selected_voice="Robot", playback_rate=1.25)
        pipeline = make_pipeline()

        await pipeline.run(queued_entry(ledger, "u-1"))

        call = pipeline.collaborators.speech.calls[0]
        assert call["voice"] == "alloy"
        assert call["speed"] == 1.25

    @pytest.mark.asyncio
    async def test_premium_sources_passed_through(self, make_pipeline, seed_user, ledger):
        seed_user("u-1", is_premium=True, selected_news_sources=["bbc-news"])
        pipeline = make_pipeline()

        await pipeline.run(queued_entry(ledger, "u-1"))

        assert pipeline.collaborators.news.calls[0]["sources"] == ["bbc-news"]

    @pytest.mark.asyncio
    async def test_manual_run_keeps_last_run(self, make_pipeline, store, seed_user, ledger):
        seed_user("u-1")
        pipeline = make_pipeline()

        result = await pipeline.run(queued_entry(ledger, "u-1", trigger=TriggerSource.MANUAL))

        doc = store.load("u-1").document
        assert result.status == "completed"
        assert doc["scheduled_summaries"][0]["last_run"] is None
        assert doc["summary_history"][0]["trigger"] == "manual"

    @pytest.mark.asyncio
    async def test_deleted_job_is_invalid(self, make_pipeline, seed_user, ledger):
        seed_user("u-1", jobs=[job_dict("other")])
        pipeline = make_pipeline()

        with pytest.raises(ValidationError):
            await pipeline.run(queued_entry(ledger, "u-1", "daily"))

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calls(self, make_pipeline, seed_user, ledger, breaker):
        seed_user("u-1")
        trip_breaker(breaker)
        pipeline = make_pipeline()

        with pytest.raises(CircuitOpenError):
            await pipeline.run(queued_entry(ledger, "u-1"))

        assert pipeline.collaborators.news.calls == []
        assert breaker.state == CircuitState.OPEN


class TestPipelineTimeouts:
    @pytest.mark.asyncio
    async def test_slow_call_becomes_call_timeout(self, make_pipeline):
        pipeline = make_pipeline(call_timeout=0.01, news=FakeNews(delay=1))

        with pytest.raises(CallTimeoutError) as exc_info:
            await pipeline._bounded(
                pipeline.collaborators.news.fetch_articles("technology", count=1), "fetch_articles"
            )

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_every_topic_timing_out_fails_the_run(self, make_pipeline, seed_user, ledger, breaker):
        seed_user("u-1")
        pipeline = make_pipeline(call_timeout=0.01, news=FakeNews(delay=1))

        with pytest.raises(ExternalServiceError):
            await pipeline.run(queued_entry(ledger, "u-1"))

        assert breaker.failure_count == 1
