"""Tests for the HTTP surface: ingest, jobs, processing triggers, webhooks, health.

Services are placed on app.state directly; the lifespan is not run.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.dealflow.core.security import compute_signature
from src.dealflow.ingestion.backfill import BackfillReport, OwnerBackfill
from src.dealflow.ingestion.dispatcher import JobDispatcher
from src.dealflow.ingestion.gateway import IngestionGateway
from src.dealflow.ingestion.webhooks import WebhookOwnerResolver
from src.dealflow.integrations.schemas import IntegrationProvider
from src.dealflow.jobs.schemas import JobCreate, JobMetadata, JobStatus, TranscriptSource, Trigger
from src.dealflow.pipeline.runner import PipelineOutcome
from src.dealflow.pipeline.worker import JobRunResult, WorkerReport
from tests.fakes import OTHER_OWNER_ID, OWNER_ID, owner_headers, worker_headers


@pytest.fixture
def dispatcher():
    return AsyncMock()


@pytest.fixture
def wired(app, job_repo, integration_repo, dispatcher):
    """App with the job repository, gateway and webhook resolver installed."""
    app.state.job_repository = job_repo
    app.state.dispatcher = dispatcher
    app.state.ingestion_gateway = IngestionGateway(job_repo, dispatcher)
    app.state.owner_resolver = WebhookOwnerResolver(integration_repo)
    return app


async def _create_job(job_repo, owner_id=OWNER_ID, content="Alice: hi"):
    return await job_repo.create_job(
        owner_id,
        JobCreate(
            source=TranscriptSource.MANUAL,
            metadata=JobMetadata(title="Pitch", transcript_content=content),
        ),
    )


# ── Ingest ───────────────────────────────────────────────────────────────────


class TestIngest:
    @pytest.mark.asyncio
    async def test_requires_token(self, wired, client):
        response = await client.post("/api/v1/ingest", json={"source": "manual", "content": "x"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_queues_job(self, wired, client, job_repo, dispatcher):
        response = await client.post(
            "/api/v1/ingest",
            json={"source": "manual", "content": "Alice: hello", "title": "Acme"},
            headers=owner_headers(),
        )

        assert response.status_code == 202
        job = job_repo.jobs[response.json()["jobId"]]
        assert job.owner_id == OWNER_ID
        assert job.status is JobStatus.PENDING
        assert job.metadata.raw_payload["owner_name"] == "Dana Investor"
        dispatcher.dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_request(self, wired, client, job_repo):
        response = await client.post(
            "/api/v1/ingest", json={"source": "manual"}, headers=owner_headers()
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Transcript content is required for source 'manual'"}

        response = await client.post(
            "/api/v1/ingest", json={"source": "zoom", "content": "x"}, headers=owner_headers()
        )
        assert response.status_code == 400
        assert "Unknown transcript source" in response.json()["error"]
        assert job_repo.jobs == {}

    @pytest.mark.asyncio
    async def test_job_creation_failure(self, wired, client, job_repo):
        job_repo.create_job = AsyncMock(side_effect=ConnectionError("db down"))
        response = await client.post(
            "/api/v1/ingest", json={"source": "manual", "content": "x"}, headers=owner_headers()
        )
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to create job"}

    @pytest.mark.asyncio
    async def test_gateway_unavailable(self, client):
        response = await client.post(
            "/api/v1/ingest", json={"source": "manual", "content": "x"}, headers=owner_headers()
        )
        assert response.status_code == 503


# ── Jobs ─────────────────────────────────────────────────────────────────────


class TestJobs:
    @pytest.mark.asyncio
    async def test_list_hides_transcript_and_other_owners(self, wired, client, job_repo):
        await _create_job(job_repo, content="secret transcript")
        await _create_job(job_repo, owner_id=OTHER_OWNER_ID)

        response = await client.get("/api/v1/jobs", headers=owner_headers())

        assert response.status_code == 200
        (job,) = response.json()
        assert job["userId"] == OWNER_ID
        assert job["status"] == "pending"
        assert job["currentStep"] == "queued"
        assert job["metadata"]["title"] == "Pitch"
        assert "transcript_content" not in job["metadata"]

    @pytest.mark.asyncio
    async def test_status_filter(self, wired, client, job_repo):
        job = await _create_job(job_repo)
        await job_repo.fail_job(job.id, "boom", 10)
        await _create_job(job_repo)

        response = await client.get("/api/v1/jobs?status=failed", headers=owner_headers())

        assert [j["id"] for j in response.json()] == [job.id]
        assert response.json()[0]["error"] == "boom"

    @pytest.mark.asyncio
    async def test_get_one(self, wired, client, job_repo):
        job = await _create_job(job_repo)

        response = await client.get(f"/api/v1/jobs/{job.id}", headers=owner_headers())
        assert response.status_code == 200
        assert response.json()["progress"] == 0

        other = await client.get(
            f"/api/v1/jobs/{job.id}", headers=owner_headers(owner_id=OTHER_OWNER_ID)
        )
        assert other.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self, wired, client):
        response = await client.get("/api/v1/jobs/not-a-uuid", headers=owner_headers())
        assert response.status_code == 404


# ── Processing Triggers ──────────────────────────────────────────────────────


class TestProcessDirect:
    @pytest.mark.asyncio
    async def test_requires_worker_secret(self, wired, client):
        for headers in ({}, worker_headers("wrong"), owner_headers()):
            response = await client.post(
                "/api/v1/process/direct", json={"jobId": "x"}, headers=headers
            )
            assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_and_unknown_job(self, wired, client):
        wired.state.pipeline = MagicMock(run=AsyncMock())

        response = await client.post("/api/v1/process/direct", json={}, headers=worker_headers())
        assert response.status_code == 400
        assert response.json() == {"error": "jobId is required"}

        for job_id in ("not-a-uuid", OTHER_OWNER_ID):
            response = await client.post(
                "/api/v1/process/direct", json={"jobId": job_id}, headers=worker_headers()
            )
            assert response.status_code == 404
            assert response.json() == {"error": "Job not found"}
        wired.state.pipeline.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runs_pipeline(self, wired, client, job_repo):
        job = await _create_job(job_repo)
        wired.state.pipeline = MagicMock(
            run=AsyncMock(return_value=PipelineOutcome(success=True, memo_id="memo-1"))
        )

        response = await client.post(
            "/api/v1/process/direct", json={"jobId": job.id}, headers=worker_headers()
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "memoId": "memo-1"}
        wired.state.pipeline.run.assert_awaited_once_with(job.id, Trigger.DIRECT)

    @pytest.mark.asyncio
    async def test_already_processed_is_reported(self, wired, client, job_repo):
        job = await _create_job(job_repo)
        wired.state.pipeline = MagicMock(
            run=AsyncMock(
                return_value=PipelineOutcome(success=False, error="Job already processed")
            )
        )

        response = await client.post(
            "/api/v1/process/direct", json={"jobId": job.id}, headers=worker_headers()
        )
        assert response.json() == {"success": False, "error": "Job already processed"}

    @pytest.mark.asyncio
    async def test_pipeline_unavailable(self, wired, client):
        response = await client.post(
            "/api/v1/process/direct", json={"jobId": OWNER_ID}, headers=worker_headers()
        )
        assert response.status_code == 503


class TestProcessWorker:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_batch_report(self, app, client, method):
        pool = MagicMock(
            run_batch=AsyncMock(
                return_value=WorkerReport(
                    recovered_stale=1,
                    processed=2,
                    results=[
                        JobRunResult(job_id="a", success=True, memo_id="m-a"),
                        JobRunResult(job_id="b", success=False, error="boom"),
                    ],
                )
            )
        )
        app.state.worker_pool = pool

        response = await client.request(
            method, "/api/v1/process/worker?limit=5", headers=worker_headers()
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["recoveredStale"] == 1
        assert body["processed"] == 2
        assert body["results"][0] == {
            "jobId": "a", "success": True, "memoId": "m-a", "skipped": False, "error": None,
        }
        pool.run_batch.assert_awaited_once_with(limit=5, trigger=Trigger.WORKER)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("requested", "clamped"), [(0, 1), (50, 10), (3, 3)])
    async def test_limit_is_clamped(self, app, client, requested, clamped):
        pool = MagicMock(run_batch=AsyncMock(return_value=WorkerReport()))
        app.state.worker_pool = pool

        await client.post(f"/api/v1/process/worker?limit={requested}", headers=worker_headers())

        assert pool.run_batch.await_args.kwargs["limit"] == clamped

    @pytest.mark.asyncio
    async def test_requires_worker_secret(self, app, client):
        app.state.worker_pool = MagicMock(run_batch=AsyncMock())
        response = await client.get("/api/v1/process/worker")
        assert response.status_code == 401
        app.state.worker_pool.run_batch.assert_not_awaited()


class TestProcessRetry:
    @pytest.mark.asyncio
    async def test_nothing_pending(self, wired, client):
        response = await client.post("/api/v1/process/retry", headers=owner_headers())
        assert response.json() == {
            "message": "No pending jobs to retry", "processed": 0, "total": 0, "errors": [],
        }

    @pytest.mark.asyncio
    async def test_reports_per_job_errors(self, wired, client, job_repo, dispatcher):
        first = await _create_job(job_repo)
        second = await _create_job(job_repo)
        await _create_job(job_repo, owner_id=OTHER_OWNER_ID)

        async def post_direct(job_id):
            if job_id == second.id:
                raise RuntimeError("timeout")

        dispatcher.post_direct = AsyncMock(side_effect=post_direct)

        response = await client.post("/api/v1/process/retry", headers=owner_headers())

        body = response.json()
        assert body["message"] == "Processed 1 of 2 jobs"
        assert body["processed"] == 1
        assert body["total"] == 2
        assert body["errors"] == [f"Job {second.id}: timeout"]
        assert [c.args[0] for c in dispatcher.post_direct.await_args_list] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_slow_run_counts_as_processed(self, wired, client, job_repo):
        slow = await _create_job(job_repo)
        timed_out = await _create_job(job_repo)
        seen_timeouts = []

        async def handler(request: httpx.Request) -> httpx.Response:
            job_id = json.loads(request.content)["jobId"]
            if job_id == timed_out.id:
                raise httpx.ReadTimeout("", request=request)
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"success": True, "memoId": "memo-1"})

        real_client = httpx.AsyncClient

        def client_factory(**kwargs):
            seen_timeouts.append(kwargs["timeout"])
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        wired.state.dispatcher = JobDispatcher(
            "http://worker.local", "s3cret", connect_timeout=0.01
        )
        with patch("src.dealflow.ingestion.dispatcher.httpx.AsyncClient", client_factory):
            response = await client.post("/api/v1/process/retry", headers=owner_headers())

        body = response.json()
        assert body["processed"] == 1
        assert body["total"] == 2
        assert body["errors"] == [f"Job {timed_out.id}: ReadTimeout"]
        assert all(t.read is None and t.connect == 0.01 for t in seen_timeouts)
        assert slow.id not in " ".join(body["errors"])

    @pytest.mark.asyncio
    async def test_requires_owner(self, wired, client):
        response = await client.post("/api/v1/process/retry", headers=worker_headers())
        assert response.status_code == 401


# ── Backfill ─────────────────────────────────────────────────────────────────


class TestProcessBackfill:
    @pytest.mark.asyncio
    async def test_requires_worker_secret(self, wired, client):
        response = await client.post("/api/v1/process/backfill", headers=owner_headers())
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unavailable_without_backfill(self, wired, client):
        response = await client.post("/api/v1/process/backfill", headers=worker_headers())
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_rejects_bad_user_id(self, wired, client):
        wired.state.backfill = AsyncMock()
        response = await client.post(
            "/api/v1/process/backfill", json={"userId": "nope"}, headers=worker_headers()
        )
        assert response.status_code == 400
        wired.state.backfill.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reports_counts(self, wired, client):
        report = BackfillReport(owners=[OwnerBackfill(OWNER_ID, queued=2, skipped=3, errors=1)])
        wired.state.backfill = AsyncMock()
        wired.state.backfill.run.return_value = report

        response = await client.post(
            "/api/v1/process/backfill", json={"userId": OWNER_ID}, headers=worker_headers()
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert (body["processed"], body["skipped"], body["errors"]) == (2, 3, 1)
        assert body["details"] == [
            {"userId": OWNER_ID, "processed": 2, "skipped": 3, "errors": 1}
        ]
        wired.state.backfill.run.assert_awaited_once_with(owner_id=OWNER_ID)

    @pytest.mark.asyncio
    async def test_empty_body_backfills_everyone(self, wired, client):
        wired.state.backfill = AsyncMock()
        wired.state.backfill.run.return_value = BackfillReport()

        response = await client.post("/api/v1/process/backfill", headers=worker_headers())

        assert response.json()["processed"] == 0
        wired.state.backfill.run.assert_awaited_once_with(owner_id=None)


# ── Webhooks ─────────────────────────────────────────────────────────────────


def _fireflies(event_type="Transcription completed", **extra) -> dict:
    return {
        "meetingId": "ff-meeting-1",
        "eventType": event_type,
        "transcript": {"title": "Acme intro", "participants": ["Alice"]},
        **extra,
    }


def _granola(event="meeting.completed") -> dict:
    return {
        "event": event,
        "meetingId": "gr-1",
        "userId": "granola-user-1",
        "transcript": {"title": "Founder sync", "content": "Alice: hi\nBob: hello"},
    }


class TestFirefliesWebhook:
    @pytest.mark.asyncio
    async def test_challenge_echo(self, client):
        response = await client.get("/api/v1/webhooks/fireflies?challenge=abc123")
        assert response.json() == {"challenge": "abc123"}

    @pytest.mark.asyncio
    async def test_non_completed_event_ignored(self, wired, client, job_repo):
        response = await client.post(
            "/api/v1/webhooks/fireflies", json=_fireflies("Transcription started")
        )
        assert response.status_code == 200
        assert response.json() == {
            "ignored": True,
            "message": "Event type not processed",
            "eventType": "Transcription started",
        }
        assert job_repo.jobs == {}

    @pytest.mark.asyncio
    async def test_invalid_payload(self, wired, client):
        response = await client.post("/api/v1/webhooks/fireflies", content=b"not json")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid payload format"}

    @pytest.mark.asyncio
    async def test_unknown_owner(self, wired, client):
        response = await client.post("/api/v1/webhooks/fireflies", json=_fireflies())
        assert response.status_code == 404
        assert response.json() == {"error": "Could not determine user for webhook"}

    @pytest.mark.asyncio
    async def test_queues_job_for_path_integration(self, wired, client, job_repo, integration_repo):
        integration_repo.add(OWNER_ID, IntegrationProvider.FIREFLIES, {"webhook_id": "wh-1"})

        response = await client.post("/api/v1/webhooks/fireflies/wh-1", json=_fireflies())

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["message"] == "Transcript queued for processing"
        job = job_repo.jobs[body["jobId"]]
        assert job.owner_id == OWNER_ID
        assert job.source is TranscriptSource.FIREFLIES
        assert job.source_id == "ff-meeting-1"

    @pytest.mark.asyncio
    async def test_signature_enforced_when_secret_set(self, wired, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "FIREFLIES_WEBHOOK_SECRET", "ff-secret")
        body = json.dumps(_fireflies(clientReferenceId=OWNER_ID)).encode()

        rejected = await client.post(
            "/api/v1/webhooks/fireflies",
            content=body,
            headers={"x-fireflies-signature": "deadbeef", "content-type": "application/json"},
        )
        assert rejected.status_code == 401
        assert rejected.json() == {"error": "Invalid webhook signature"}

        accepted = await client.post(
            "/api/v1/webhooks/fireflies",
            content=body,
            headers={
                "x-fireflies-signature": compute_signature(body, "ff-secret"),
                "content-type": "application/json",
            },
        )
        assert accepted.status_code == 200
        assert accepted.json()["success"] is True


class TestGranolaWebhook:
    @pytest.mark.asyncio
    async def test_queues_job_with_content(self, wired, client, job_repo, integration_repo):
        integration_repo.add(
            OWNER_ID, IntegrationProvider.GRANOLA, {"external_user_id": "granola-user-1"}
        )

        response = await client.post("/api/v1/webhooks/granola", json=_granola())

        assert response.status_code == 200
        job = job_repo.jobs[response.json()["jobId"]]
        assert job.source is TranscriptSource.GRANOLA
        assert job.metadata.transcript_content == "Alice: hi\nBob: hello"

    @pytest.mark.asyncio
    async def test_other_events_ignored(self, wired, client):
        response = await client.post("/api/v1/webhooks/granola", json=_granola("meeting.started"))
        assert response.json()["ignored"] is True

    @pytest.mark.asyncio
    async def test_prefixed_signature(self, wired, client, integration_repo, settings, monkeypatch):
        integration_repo.add(
            OWNER_ID, IntegrationProvider.GRANOLA, {"external_user_id": "granola-user-1"}
        )
        monkeypatch.setattr(settings, "GRANOLA_WEBHOOK_SECRET", "gr-secret")
        body = json.dumps(_granola()).encode()
        digest = compute_signature(body, "gr-secret")

        bare = await client.post(
            "/api/v1/webhooks/granola", content=body, headers={"x-granola-signature": digest}
        )
        assert bare.status_code == 401

        prefixed = await client.post(
            "/api/v1/webhooks/granola",
            content=body,
            headers={"x-granola-signature": f"sha256={digest}"},
        )
        assert prefixed.status_code == 200


# ── Health ───────────────────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_ready_with_bus_disabled(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_BUS_ENABLED", False)
        engine = MagicMock()
        conn = MagicMock(execute=AsyncMock())
        engine.connect.return_value.__aenter__.return_value = conn

        with patch("src.dealflow.api.v1.health.get_engine", return_value=engine):
            response = await client.get("/api/v1/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["checks"]["redis"] == "disabled"

    @pytest.mark.asyncio
    async def test_degraded_when_database_down(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "EVENT_BUS_ENABLED", False)
        with patch(
            "src.dealflow.api.v1.health.get_engine", side_effect=RuntimeError("no engine")
        ):
            response = await client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["database"] == "error"
