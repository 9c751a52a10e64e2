"""Tests for job schemas, progress checkpoints, and stale-job recovery.

Covers:
- TranscriptSource pull/content requirements
- ProgressReporter monotonic checkpoints and best-effort writes
- StaleJobReaper lease expiry (slow-but-alive jobs are left alone)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.dealflow.jobs.progress import STEP_PROGRESS, ProgressReporter
from src.dealflow.jobs.reaper import StaleJobReaper
from src.dealflow.jobs.schemas import (
    JobCreate,
    JobMetadata,
    JobStatus,
    ProcessingStep,
    TranscriptSource,
)
from tests.fakes import OWNER_ID, InMemoryJobRepository


async def _pending_job(repo: InMemoryJobRepository, source_id: str | None = None):
    return await repo.create_job(
        OWNER_ID,
        JobCreate(
            source=TranscriptSource.MANUAL,
            source_id=source_id,
            metadata=JobMetadata(transcript_content="Alice: hello"),
        ),
    )


# ── Schemas ──────────────────────────────────────────────────────────────────


class TestTranscriptSource:
    def test_only_fireflies_is_pulled(self):
        assert TranscriptSource.FIREFLIES.requires_pull
        assert not TranscriptSource.MANUAL.requires_pull
        assert not TranscriptSource.GRANOLA.requires_pull

    def test_push_sources_require_content(self):
        assert TranscriptSource.MANUAL.requires_content
        assert TranscriptSource.UPLOAD.requires_content
        assert TranscriptSource.GRANOLA.requires_content
        assert not TranscriptSource.FIREFLIES.requires_content


# ── ProgressReporter ─────────────────────────────────────────────────────────


class TestProgressReporter:
    def test_checkpoints_are_strictly_increasing_in_stage_order(self):
        order = [
            ProcessingStep.QUEUED,
            ProcessingStep.FETCHING,
            ProcessingStep.CLASSIFYING,
            ProcessingStep.RESOLVING_COMPANY,
            ProcessingStep.GENERATING,
            ProcessingStep.SAVING,
            ProcessingStep.EXTRACTING,
            ProcessingStep.FILING,
            ProcessingStep.COMPLETED,
        ]
        values = [STEP_PROGRESS[step] for step in order]
        assert values == sorted(values)
        assert len(set(values)) == len(values)
        assert values[-1] == 100

    @pytest.mark.asyncio
    async def test_advance_persists_step_and_progress(self):
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        reporter = ProgressReporter(repo, job.id)

        assert await reporter.advance(ProcessingStep.FETCHING) == 10
        assert await reporter.advance(ProcessingStep.CLASSIFYING) == 25

        stored = await repo.get_job(job.id)
        assert stored.current_step is ProcessingStep.CLASSIFYING
        assert stored.progress == 25
        assert stored.heartbeat_at is not None

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self):
        """Re-entering an earlier step keeps the higher value."""
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        reporter = ProgressReporter(repo, job.id)

        await reporter.advance(ProcessingStep.GENERATING)
        assert await reporter.advance(ProcessingStep.FETCHING) == 60
        assert reporter.history == [60, 60]

    @pytest.mark.asyncio
    async def test_terminal_steps_rejected_by_advance(self):
        reporter = ProgressReporter(InMemoryJobRepository(), "job")
        with pytest.raises(ValueError, match="Terminal step"):
            await reporter.advance(ProcessingStep.COMPLETED)
        with pytest.raises(ValueError, match="Terminal step"):
            await reporter.advance(ProcessingStep.FAILED)

    @pytest.mark.asyncio
    async def test_progress_write_failure_does_not_raise(self):
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        repo.fail_progress_writes = True
        reporter = ProgressReporter(repo, job.id)

        assert await reporter.advance(ProcessingStep.FETCHING) == 10
        assert reporter.step is ProcessingStep.FETCHING

    @pytest.mark.asyncio
    async def test_fail_keeps_last_progress(self):
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        reporter = ProgressReporter(repo, job.id)

        await reporter.advance(ProcessingStep.CLASSIFYING)
        await reporter.fail("boom")

        stored = await repo.get_job(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.current_step is ProcessingStep.FAILED
        assert stored.progress == 25
        assert stored.error == "boom"

    @pytest.mark.asyncio
    async def test_complete_sets_100_and_result(self):
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        reporter = ProgressReporter(repo, job.id)

        await reporter.complete({"memo_id": "m-1"})

        stored = await repo.get_job(job.id)
        assert stored.status is JobStatus.COMPLETED
        assert stored.progress == 100
        assert stored.result == {"memo_id": "m-1"}
        assert reporter.history[-1] == 100


# ── StaleJobReaper ───────────────────────────────────────────────────────────


class TestStaleJobReaper:
    @pytest.mark.asyncio
    async def test_expired_lease_is_reset_to_pending(self):
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        claimed = await repo.claim_job(job.id)
        now = datetime.now(timezone.utc)
        repo.put(claimed.model_copy(update={"heartbeat_at": now - timedelta(minutes=11)}))

        reaper = StaleJobReaper(repo, timeout=timedelta(minutes=10))
        assert await reaper.reap(now=now) == 1

        stored = await repo.get_job(job.id)
        assert stored.status is JobStatus.PENDING
        assert stored.progress == 0
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_recent_heartbeat_is_left_alone(self):
        """A slow job that keeps heartbeating is not recovered."""
        repo = InMemoryJobRepository()
        job = await _pending_job(repo)
        claimed = await repo.claim_job(job.id)
        now = datetime.now(timezone.utc)
        repo.put(claimed.model_copy(update={"heartbeat_at": now - timedelta(minutes=9)}))

        reaper = StaleJobReaper(repo)
        assert await reaper.reap(now=now) == 0
        assert (await repo.get_job(job.id)).status is JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_pending_and_finished_jobs_ignored(self):
        repo = InMemoryJobRepository()
        pending = await _pending_job(repo)
        done = await _pending_job(repo)
        await repo.claim_job(done.id)
        await repo.complete_job(done.id, {})

        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert await StaleJobReaper(repo).reap(now=future) == 0
        assert (await repo.get_job(pending.id)).status is JobStatus.PENDING
        assert (await repo.get_job(done.id)).status is JobStatus.COMPLETED

    def test_default_timeout_is_ten_minutes(self):
        assert StaleJobReaper(InMemoryJobRepository()).timeout == timedelta(minutes=10)

