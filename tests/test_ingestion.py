"""Tests for the ingestion gateway, job dispatch, and provider webhooks."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.dealflow.events.schemas import EventType, PipelineEvent
from src.dealflow.ingestion.dispatcher import JobDispatcher
from src.dealflow.ingestion.gateway import (
    IngestionGateway,
    InvalidSourceError,
    parse_descriptor,
    validate_descriptor,
)
from src.dealflow.ingestion.webhooks import (
    WebhookOwnerResolver,
    WebhookPayloadError,
    parse_fireflies_payload,
    parse_granola_payload,
)
from src.dealflow.integrations.schemas import IntegrationProvider
from src.dealflow.jobs.schemas import JobStatus, SourceDescriptor, TranscriptSource
from tests.fakes import OTHER_OWNER_ID, OWNER_ID, InMemoryIntegrationRepository, InMemoryJobRepository


# ── Descriptors ──────────────────────────────────────────────────────────────


class TestDescriptor:
    def test_camel_case_body(self):
        descriptor = parse_descriptor(
            {
                "source": "fireflies",
                "transcriptId": "ff-1",
                "title": "Acme intro",
                "participants": ["Alice", {"name": "Bob", "email": "bob@acme.io"}, " "],
                "meetingDate": "2024-03-05T15:00:00Z",
                "duration": 1800,
            }
        )
        assert descriptor.source is TranscriptSource.FIREFLIES
        assert descriptor.transcript_id == "ff-1"
        assert [p.name for p in descriptor.participants] == ["Alice", "Bob"]
        assert descriptor.participants[1].email == "bob@acme.io"
        assert descriptor.meeting_date == datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)

    def test_unknown_source_rejected(self):
        with pytest.raises(InvalidSourceError, match="Unknown transcript source"):
            parse_descriptor({"source": "zoom", "content": "hi"})

    def test_malformed_field_rejected(self):
        with pytest.raises(InvalidSourceError, match="Invalid ingestion request"):
            parse_descriptor({"source": "manual", "content": "hi", "meetingDate": "not a date"})

    @pytest.mark.parametrize("source", ["manual", "upload", "granola"])
    def test_push_sources_require_content(self, source):
        descriptor = SourceDescriptor(source=TranscriptSource(source), content="   ")
        with pytest.raises(InvalidSourceError, match=f"content is required for source '{source}'"):
            validate_descriptor(descriptor)

    def test_fireflies_needs_id_or_content(self):
        with pytest.raises(InvalidSourceError, match="transcript id or content"):
            validate_descriptor(SourceDescriptor(source=TranscriptSource.FIREFLIES))
        validate_descriptor(SourceDescriptor(source=TranscriptSource.FIREFLIES, transcript_id="x"))
        validate_descriptor(SourceDescriptor(source=TranscriptSource.FIREFLIES, content="Alice: hi"))


# ── Gateway ──────────────────────────────────────────────────────────────────


class TestIngestionGateway:
    @pytest.mark.asyncio
    async def test_creates_pending_job_and_dispatches(self):
        repo = InMemoryJobRepository()
        dispatcher = AsyncMock()
        gateway = IngestionGateway(repo, dispatcher)

        job_id = await gateway.ingest(
            OWNER_ID,
            SourceDescriptor(
                source=TranscriptSource.FIREFLIES,
                transcript_id="ff-1",
                title="Acme intro",
                raw_payload={"meetingId": "ff-1"},
            ),
        )

        job = repo.jobs[job_id]
        assert job.status is JobStatus.PENDING
        assert job.owner_id == OWNER_ID
        assert job.source_id == "ff-1"
        assert job.metadata.external_id == "ff-1"
        assert job.metadata.raw_payload == {"meetingId": "ff-1"}
        dispatcher.dispatch.assert_awaited_once_with(job)

    @pytest.mark.asyncio
    async def test_invalid_descriptor_creates_nothing(self):
        repo = InMemoryJobRepository()
        gateway = IngestionGateway(repo, AsyncMock())

        with pytest.raises(InvalidSourceError):
            await gateway.ingest(OWNER_ID, SourceDescriptor(source=TranscriptSource.MANUAL))
        assert repo.jobs == {}

    @pytest.mark.asyncio
    async def test_dispatch_failure_still_returns_job(self):
        repo = InMemoryJobRepository()
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = RuntimeError("bus down")

        job_id = await IngestionGateway(repo, dispatcher).ingest(
            OWNER_ID, SourceDescriptor(source=TranscriptSource.MANUAL, content="Alice: hi")
        )

        assert repo.jobs[job_id].status is JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_creation_failure_propagates(self):
        repo = InMemoryJobRepository()
        repo.create_job = AsyncMock(side_effect=ConnectionError("db down"))
        dispatcher = AsyncMock()

        with pytest.raises(ConnectionError):
            await IngestionGateway(repo, dispatcher).ingest(
                OWNER_ID, SourceDescriptor(source=TranscriptSource.MANUAL, content="Alice: hi")
            )
        dispatcher.dispatch.assert_not_awaited()


# ── Dispatcher ───────────────────────────────────────────────────────────────


async def _job(source_id: str | None = "ff-1"):
    repo = InMemoryJobRepository()
    descriptor = SourceDescriptor(
        source=TranscriptSource.FIREFLIES if source_id else TranscriptSource.MANUAL,
        transcript_id=source_id,
        content=None if source_id else "Alice: hi",
    )
    job_id = await IngestionGateway(repo, AsyncMock()).ingest(OWNER_ID, descriptor)
    return repo.jobs[job_id]


class TestJobDispatcher:
    @pytest.mark.asyncio
    async def test_publishes_event_when_bus_enabled(self):
        job = await _job()
        bus = AsyncMock()
        dispatcher = JobDispatcher("http://localhost:8000/", "secret", bus=bus)

        assert await dispatcher.dispatch(job) == "event"

        stream, event = bus.publish.await_args.args
        assert stream == "transcripts"
        assert isinstance(event, PipelineEvent)
        assert event.event_type is EventType.TRANSCRIPT_RECEIVED
        assert event.job_id == job.id
        assert event.owner_id == OWNER_ID
        assert event.source == "fireflies"
        assert event.data == {"transcript_id": "ff-1"}
        assert dispatcher.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_publish_failure_falls_back_to_direct(self):
        job = await _job(source_id=None)
        bus = AsyncMock()
        bus.publish.side_effect = ConnectionError("redis gone")
        dispatcher = JobDispatcher("http://localhost:8000", "secret", bus=bus)

        with patch.object(dispatcher, "post_direct", AsyncMock()) as post:
            assert await dispatcher.dispatch(job) == "direct"
            await dispatcher.drain()

        post.assert_awaited_once_with(job.id)

    @pytest.mark.asyncio
    async def test_direct_without_bus(self):
        job = await _job()
        dispatcher = JobDispatcher("http://localhost:8000", "secret")
        assert dispatcher.bus_enabled is False

        with patch.object(dispatcher, "post_direct", AsyncMock()) as post:
            assert await dispatcher.dispatch(job) == "direct"
            await dispatcher.drain()

        post.assert_awaited_once_with(job.id)

    @pytest.mark.asyncio
    async def test_direct_trigger_failure_is_contained(self):
        dispatcher = JobDispatcher("http://localhost:8000", "secret")
        with patch.object(
            dispatcher, "post_direct", AsyncMock(side_effect=httpx.ConnectError("refused"))
        ):
            task = dispatcher.submit_direct("job-1")
            await task

        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_post_direct_sends_job_and_secret(self):
        captured = {}

        async def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["body"] = request.content
            return httpx.Response(200, json={"success": True})

        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient

        def client_factory(**kwargs):
            return real_client(transport=transport, **kwargs)

        dispatcher = JobDispatcher("http://worker.local/", "s3cret")
        with patch("src.dealflow.ingestion.dispatcher.httpx.AsyncClient", client_factory):
            response = await dispatcher.post_direct("job-42")

        assert response.status_code == 200
        assert captured["url"] == "http://worker.local/api/v1/process/direct"
        assert captured["auth"] == "Bearer s3cret"
        assert json.loads(captured["body"]) == {"jobId": "job-42"}

    @pytest.mark.asyncio
    async def test_post_direct_waits_for_full_run(self):
        timeouts = []

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"success": True})

        real_client = httpx.AsyncClient

        def client_factory(**kwargs):
            timeouts.append(kwargs["timeout"])
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        dispatcher = JobDispatcher("http://worker.local", "s3cret", connect_timeout=0.01)
        with patch("src.dealflow.ingestion.dispatcher.httpx.AsyncClient", client_factory):
            response = await dispatcher.post_direct("job-42")

        assert response.status_code == 200
        (timeout,) = timeouts
        assert timeout.read is None
        assert timeout.connect == 0.01

    @pytest.mark.asyncio
    async def test_blank_error_logged_by_type(self):
        dispatcher = JobDispatcher("http://localhost:8000", "secret")
        with patch.object(
            dispatcher, "post_direct", AsyncMock(side_effect=httpx.ReadTimeout(""))
        ), patch("src.dealflow.ingestion.dispatcher.logger") as log:
            await dispatcher.submit_direct("job-1")

        assert log.warning.call_args.kwargs["error"] == "ReadTimeout"


# ── Webhooks ─────────────────────────────────────────────────────────────────


def _fireflies_body(**overrides):
    return {
        "meetingId": "ff-meeting-1",
        "eventType": "Transcription completed",
        "transcript": {
            "title": "Acme intro",
            "date": 1709650800000,
            "duration": "1800.5",
            "participants": ["Alice", {"name": "Bob", "email": "bob@acme.io"}, 7],
        },
        **overrides,
    }


def _granola_body(**overrides):
    return {
        "event": "meeting.completed",
        "meetingId": "gr-1",
        "userId": "granola-user-1",
        "transcript": {
            "title": "Founder sync",
            "content": "Alice: hi\nBob: hello",
            "date": "2024-03-05T15:00:00Z",
            "participants": [{"name": "Alice", "email": "alice@fund.vc"}],
        },
        **overrides,
    }


class TestWebhookPayloads:
    def test_fireflies_payload(self):
        payload = parse_fireflies_payload(_fireflies_body())

        assert payload.is_completed
        assert payload.meeting_date == datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)
        assert payload.duration == 1800
        assert [p.name for p in payload.participants] == ["Alice", "Bob", "Unknown"]

        descriptor = payload.to_descriptor()
        assert descriptor.source is TranscriptSource.FIREFLIES
        assert descriptor.transcript_id == "ff-meeting-1"
        assert descriptor.content is None
        assert descriptor.raw_payload["meetingId"] == "ff-meeting-1"

    def test_fireflies_defaults(self):
        payload = parse_fireflies_payload({"meetingId": "m-1", "eventType": "Something else"})
        assert not payload.is_completed
        assert payload.to_descriptor().title == "Fireflies Meeting"

    @pytest.mark.parametrize("body", [[], {"meetingId": 12}, {"eventType": "x"}])
    def test_fireflies_invalid(self, body):
        with pytest.raises(WebhookPayloadError):
            parse_fireflies_payload(body)

    def test_granola_payload(self):
        payload = parse_granola_payload(_granola_body())
        descriptor = payload.to_descriptor()

        assert payload.is_completed
        assert payload.user_id == "granola-user-1"
        assert descriptor.source is TranscriptSource.GRANOLA
        assert descriptor.content == "Alice: hi\nBob: hello"
        assert descriptor.title == "Founder sync"

    @pytest.mark.parametrize("missing", ["event", "meetingId", "transcript"])
    def test_granola_invalid(self, missing):
        body = _granola_body()
        del body[missing]
        with pytest.raises(WebhookPayloadError):
            parse_granola_payload(body)


class TestOwnerResolution:
    @pytest.mark.asyncio
    async def test_fireflies_path_webhook_id_first(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OTHER_OWNER_ID, IntegrationProvider.FIREFLIES, {"webhook_id": "wh-1"})
        payload = parse_fireflies_payload(_fireflies_body(clientReferenceId=OWNER_ID))

        resolver = WebhookOwnerResolver(integrations)
        assert await resolver.resolve_fireflies(payload, "wh-1") == OTHER_OWNER_ID
        assert await resolver.resolve_fireflies(payload, "unknown") == OWNER_ID

    @pytest.mark.asyncio
    async def test_fireflies_non_uuid_reference_ignored(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OWNER_ID, IntegrationProvider.FIREFLIES, {"webhook_id": "wh-9"})
        payload = parse_fireflies_payload(
            _fireflies_body(clientReferenceId="not-a-uuid", webhookId="wh-9")
        )
        assert await WebhookOwnerResolver(integrations).resolve_fireflies(payload) == OWNER_ID

    @pytest.mark.asyncio
    async def test_fireflies_external_user_id_last(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OWNER_ID, IntegrationProvider.FIREFLIES, {"external_user_id": "ff-user"})
        resolver = WebhookOwnerResolver(integrations)

        assert await resolver.resolve_fireflies(
            parse_fireflies_payload(_fireflies_body(userId="ff-user"))
        ) == OWNER_ID
        assert await resolver.resolve_fireflies(parse_fireflies_payload(_fireflies_body())) is None

    @pytest.mark.asyncio
    async def test_granola_user_then_email(self):
        integrations = InMemoryIntegrationRepository()
        integrations.add(OWNER_ID, IntegrationProvider.GRANOLA, {"email": "alice@fund.vc"})
        integrations.add(
            OTHER_OWNER_ID, IntegrationProvider.GRANOLA, {"external_user_id": "granola-user-1"}
        )
        resolver = WebhookOwnerResolver(integrations)

        assert await resolver.resolve_granola(parse_granola_payload(_granola_body())) == (
            OTHER_OWNER_ID
        )
        assert await resolver.resolve_granola(
            parse_granola_payload(_granola_body(userId="someone-else"))
        ) == OWNER_ID

    @pytest.mark.asyncio
    async def test_granola_unresolved(self):
        resolver = WebhookOwnerResolver(InMemoryIntegrationRepository())
        assert await resolver.resolve_granola(parse_granola_payload(_granola_body())) is None
