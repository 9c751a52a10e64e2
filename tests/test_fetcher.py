"""Tests for transcript resolution and the idempotency marker guard."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.dealflow.integrations.fireflies import (
    FirefliesSentence,
    FirefliesTranscript,
    MissingCredentialError,
    TranscriptFetchError,
)
from src.dealflow.integrations.schemas import IntegrationProvider, IntegrationStatus
from src.dealflow.jobs.schemas import Job, JobMetadata, Participant, TranscriptSource
from src.dealflow.pipeline.fetcher import TranscriptFetcher, parse_speakers
from src.dealflow.pipeline.idempotency import IdempotencyGuard
from tests.fakes import (
    OWNER_ID,
    FakeFirefliesClient,
    InMemoryIntegrationRepository,
    InMemoryJobRepository,
)

FIREFLIES = IntegrationProvider.FIREFLIES


def _job(source: TranscriptSource, source_id: str | None = None, **metadata) -> Job:
    now = datetime.now(timezone.utc)
    return Job(
        id="job-1",
        owner_id=OWNER_ID,
        source=source,
        source_id=source_id,
        metadata=JobMetadata(**metadata),
        created_at=now,
        updated_at=now,
    )


def _transcript() -> FirefliesTranscript:
    return FirefliesTranscript(
        title="Acme intro",
        date=1709650800000,
        sentences=[
            FirefliesSentence(text="Hi there", speaker_name="Alice"),
            FirefliesSentence(text="  ", speaker_name="Bob"),
            FirefliesSentence(text="Hello", speaker_name="Bob"),
            FirefliesSentence(text="Sounds good", speaker_name=None),
        ],
    )


class TestParsing:
    def test_parse_speakers_first_seen_order(self):
        text = "Alice: hi\nBob: hello\nAlice: again\nno speaker here\nhttp://x.y"
        assert parse_speakers(text) == ["Alice", "Bob"]

    def test_parse_speakers_inline_turns(self):
        text = "Alice: Let's meet again next week. Bob: I'll send the deck."
        assert parse_speakers(text) == ["Alice", "Bob"]

    def test_inline_turns_need_sentence_break(self):
        text = "Alice: the agenda covers pricing: and hiring. Mary Ann: agreed!"
        assert parse_speakers(text) == ["Alice", "Mary Ann"]

    def test_fireflies_lines(self):
        text, speakers = _transcript().to_lines()
        assert text == "Alice: Hi there\nBob: Hello\nUnknown: Sounds good"
        assert speakers == ["Alice", "Bob", "Unknown"]
        assert _transcript().meeting_date == datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)


class TestTranscriptFetcher:
    @pytest.mark.asyncio
    async def test_supplied_content_used_without_provider_call(self):
        fireflies = FakeFirefliesClient()
        fetcher = TranscriptFetcher(InMemoryIntegrationRepository(), fireflies)
        job = _job(
            TranscriptSource.FIREFLIES,
            "ff-1",
            transcript_content="  Alice: hi\nBob: yo  ",
            title="Given title",
        )

        fetched = await fetcher.fetch(job)

        assert fetched.text == "Alice: hi\nBob: yo"
        assert fetched.participants == ["Alice", "Bob"]
        assert fetched.title == "Given title"
        assert fireflies.calls == []

    @pytest.mark.asyncio
    async def test_declared_participants_win_over_parsed(self):
        fetcher = TranscriptFetcher(InMemoryIntegrationRepository(), FakeFirefliesClient())
        job = _job(
            TranscriptSource.MANUAL,
            transcript_content="Alice: hi",
            participants=[Participant(name="Alice Chen"), Participant(name=" ")],
        )
        assert (await fetcher.fetch(job)).participants == ["Alice Chen"]

    @pytest.mark.asyncio
    async def test_pull_uses_stored_key_and_marks_active(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OWNER_ID, FIREFLIES, {"api_key": "ff-key"}, status=IntegrationStatus.ERROR)
        fireflies = FakeFirefliesClient({"ff-1": _transcript()})

        fetched = await TranscriptFetcher(integrations, fireflies).fetch(
            _job(TranscriptSource.FIREFLIES, "ff-1")
        )

        assert fireflies.calls == [("ff-key", "ff-1")]
        assert fetched.title == "Acme intro"
        assert fetched.participants == ["Alice", "Bob", "Unknown"]
        assert (await integrations.get_integration(OWNER_ID, FIREFLIES)).status is (
            IntegrationStatus.ACTIVE
        )

    @pytest.mark.asyncio
    async def test_missing_key_fails_and_marks_error(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OWNER_ID, FIREFLIES, {})

        with pytest.raises(MissingCredentialError, match="Fireflies"):
            await TranscriptFetcher(integrations, FakeFirefliesClient()).fetch(
                _job(TranscriptSource.FIREFLIES, "ff-1")
            )

        integration = await integrations.get_integration(OWNER_ID, FIREFLIES)
        assert integration.status is IntegrationStatus.ERROR
        assert integration.error_message == "Missing Fireflies API key"

    @pytest.mark.asyncio
    async def test_provider_error_recorded_and_raised(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OWNER_ID, FIREFLIES, {"api_key": "ff-key"})
        fireflies = FakeFirefliesClient()
        fireflies.error = TranscriptFetchError("Fireflies API error: 401")

        with pytest.raises(TranscriptFetchError, match="401"):
            await TranscriptFetcher(integrations, fireflies).fetch(
                _job(TranscriptSource.FIREFLIES, "ff-1")
            )
        assert (await integrations.get_integration(OWNER_ID, FIREFLIES)).error_message == (
            "Fireflies API error: 401"
        )

    @pytest.mark.asyncio
    async def test_empty_push_content_is_an_error(self):
        fetcher = TranscriptFetcher(InMemoryIntegrationRepository(), FakeFirefliesClient())
        with pytest.raises(TranscriptFetchError, match="empty"):
            await fetcher.fetch(_job(TranscriptSource.MANUAL, transcript_content="   "))


class TestIdempotencyGuard:
    @pytest.mark.asyncio
    async def test_marker_round_trip(self):
        repo = InMemoryJobRepository()
        guard = IdempotencyGuard(repo)

        assert await guard.check(OWNER_ID, TranscriptSource.FIREFLIES, "ff-1") is None
        await guard.record(OWNER_ID, TranscriptSource.FIREFLIES, "ff-1", "memo-1")
        assert await guard.check(OWNER_ID, TranscriptSource.FIREFLIES, "ff-1") == "memo-1"

    @pytest.mark.asyncio
    async def test_markers_scoped_by_owner_and_source(self):
        repo = InMemoryJobRepository()
        guard = IdempotencyGuard(repo)
        await guard.record(OWNER_ID, TranscriptSource.FIREFLIES, "x", "memo-1")

        assert await guard.check("other", TranscriptSource.FIREFLIES, "x") is None
        assert await guard.check(OWNER_ID, TranscriptSource.GRANOLA, "x") is None

    @pytest.mark.asyncio
    async def test_no_source_id_never_deduplicated(self):
        repo = InMemoryJobRepository()
        guard = IdempotencyGuard(repo)

        await guard.record(OWNER_ID, TranscriptSource.MANUAL, None, "memo-1")
        assert repo.markers == {}
        assert await guard.check(OWNER_ID, TranscriptSource.MANUAL, None) is None
