"""Job repository -- async persistence for processing jobs and import markers.

Uses the session_factory callable pattern: every method opens its own
session, performs one statement (or one conditional update), and commits.
Status transitions that must not race (claiming a pending job, resetting
a stale one) are expressed as conditional UPDATEs so the database decides
the winner.

JSON columns use Pydantic model_dump(mode="json") for save and
model_validate() for load.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.dealflow.jobs.models import ImportedTranscriptModel, ProcessingJobModel
from src.dealflow.jobs.schemas import (
    Job,
    JobCreate,
    JobMetadata,
    JobStatus,
    ProcessingStep,
    TranscriptSource,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_job(model: ProcessingJobModel) -> Job:
    """Convert ProcessingJobModel to Job schema."""
    return Job(
        id=str(model.id),
        owner_id=str(model.owner_id),
        source=TranscriptSource(model.source),
        source_id=model.source_id,
        status=JobStatus(model.status),
        current_step=ProcessingStep(model.current_step),
        progress=model.progress or 0,
        metadata=JobMetadata.model_validate(model.metadata_data or {}),
        result=model.result_data or {},
        error=model.error,
        attempts=model.attempts or 0,
        heartbeat_at=model.heartbeat_at,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Repository ──────────────────────────────────────────────────────────────


class JobRepository:
    """Async persistence for processing jobs and imported-transcript markers.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Jobs ─────────────────────────────────────────────────────────────

    async def create_job(self, owner_id: str, data: JobCreate) -> Job:
        """Insert a pending job.

        Args:
            owner_id: Owning user UUID string.
            data: JobCreate with source, optional source id, and metadata.

        Returns:
            The persisted Job.
        """
        async for session in self._session_factory():
            model = ProcessingJobModel(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                source=data.source.value,
                source_id=data.source_id,
                status=JobStatus.PENDING.value,
                current_step=ProcessingStep.QUEUED.value,
                progress=0,
                metadata_data=data.metadata.model_dump(mode="json"),
                result_data={},
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_job(model)

    async def get_job(self, job_id: str) -> Job | None:
        """Get a job by id regardless of owner (internal triggers)."""
        async for session in self._session_factory():
            stmt = select(ProcessingJobModel).where(
                ProcessingJobModel.id == uuid.UUID(job_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_job(model)

    async def get_job_for_owner(self, owner_id: str, job_id: str) -> Job | None:
        """Get a job by id scoped to its owner."""
        async for session in self._session_factory():
            stmt = select(ProcessingJobModel).where(
                ProcessingJobModel.owner_id == uuid.UUID(owner_id),
                ProcessingJobModel.id == uuid.UUID(job_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_job(model)

    async def list_jobs(
        self,
        owner_id: str,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[Job]:
        """List an owner's jobs, newest first."""
        async for session in self._session_factory():
            stmt = select(ProcessingJobModel).where(
                ProcessingJobModel.owner_id == uuid.UUID(owner_id),
            )
            if status is not None:
                stmt = stmt.where(ProcessingJobModel.status == status.value)
            stmt = stmt.order_by(ProcessingJobModel.created_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_job(m) for m in result.scalars().all()]

    async def list_pending_jobs(
        self, limit: int, owner_id: str | None = None
    ) -> list[Job]:
        """List pending jobs, oldest first.

        Args:
            limit: Maximum number of jobs to return.
            owner_id: Restrict to one owner when given.
        """
        async for session in self._session_factory():
            stmt = select(ProcessingJobModel).where(
                ProcessingJobModel.status == JobStatus.PENDING.value,
            )
            if owner_id is not None:
                stmt = stmt.where(ProcessingJobModel.owner_id == uuid.UUID(owner_id))
            stmt = stmt.order_by(ProcessingJobModel.created_at).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_job(m) for m in result.scalars().all()]

    async def find_open_job(
        self, owner_id: str, source: TranscriptSource, source_id: str
    ) -> Job | None:
        """A pending or processing job already queued for this transcript."""
        async for session in self._session_factory():
            stmt = (
                select(ProcessingJobModel)
                .where(
                    ProcessingJobModel.owner_id == uuid.UUID(owner_id),
                    ProcessingJobModel.source == source.value,
                    ProcessingJobModel.source_id == source_id,
                    ProcessingJobModel.status.in_(
                        [JobStatus.PENDING.value, JobStatus.PROCESSING.value]
                    ),
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_job(model) if model else None

    async def claim_job(self, job_id: str) -> Job | None:
        """Atomically move a pending job to processing.

        The conditional UPDATE only matches while the row is still pending,
        so two concurrent claimers cannot both win.

        Returns:
            The claimed Job, or None if it was not pending.
        """
        now = _now()
        async for session in self._session_factory():
            stmt = (
                update(ProcessingJobModel)
                .where(
                    ProcessingJobModel.id == uuid.UUID(job_id),
                    ProcessingJobModel.status == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    current_step=ProcessingStep.QUEUED.value,
                    progress=0,
                    error=None,
                    heartbeat_at=now,
                    updated_at=now,
                    attempts=ProcessingJobModel.attempts + 1,
                )
                .returning(ProcessingJobModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                return None
            return _model_to_job(model)

    async def update_progress(
        self, job_id: str, step: ProcessingStep, progress: int
    ) -> None:
        """Persist a checkpoint and refresh the lease heartbeat."""
        now = _now()
        async for session in self._session_factory():
            stmt = (
                update(ProcessingJobModel)
                .where(ProcessingJobModel.id == uuid.UUID(job_id))
                .values(
                    current_step=step.value,
                    progress=progress,
                    heartbeat_at=now,
                    updated_at=now,
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def complete_job(self, job_id: str, result: dict[str, Any]) -> None:
        """Mark a job completed with its result payload."""
        now = _now()
        async for session in self._session_factory():
            stmt = (
                update(ProcessingJobModel)
                .where(ProcessingJobModel.id == uuid.UUID(job_id))
                .values(
                    status=JobStatus.COMPLETED.value,
                    current_step=ProcessingStep.COMPLETED.value,
                    progress=100,
                    result_data=result,
                    error=None,
                    heartbeat_at=now,
                    updated_at=now,
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def fail_job(self, job_id: str, error: str, progress: int) -> None:
        """Mark a job failed, keeping the progress it reached."""
        now = _now()
        async for session in self._session_factory():
            stmt = (
                update(ProcessingJobModel)
                .where(ProcessingJobModel.id == uuid.UUID(job_id))
                .values(
                    status=JobStatus.FAILED.value,
                    current_step=ProcessingStep.FAILED.value,
                    progress=progress,
                    error=error,
                    heartbeat_at=now,
                    updated_at=now,
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def reset_stale_jobs(self, older_than: datetime) -> int:
        """Return processing jobs with an expired lease to pending.

        Args:
            older_than: Jobs whose heartbeat is before this instant are stale.

        Returns:
            Number of jobs reset.
        """
        async for session in self._session_factory():
            stmt = (
                update(ProcessingJobModel)
                .where(
                    ProcessingJobModel.status == JobStatus.PROCESSING.value,
                    func.coalesce(
                        ProcessingJobModel.heartbeat_at,
                        ProcessingJobModel.updated_at,
                        ProcessingJobModel.created_at,
                    )
                    < older_than,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    current_step=ProcessingStep.QUEUED.value,
                    updated_at=_now(),
                )
                .returning(ProcessingJobModel.id)
            )
            result = await session.execute(stmt)
            reset_ids = result.scalars().all()
            await session.commit()
            return len(reset_ids)

    # ── Imported-Transcript Markers ──────────────────────────────────────

    async def get_marker(
        self, owner_id: str, source: TranscriptSource, source_id: str
    ) -> str | None:
        """Return the memo id already produced for this transcript, if any."""
        async for session in self._session_factory():
            stmt = select(ImportedTranscriptModel.memo_id).where(
                ImportedTranscriptModel.owner_id == uuid.UUID(owner_id),
                ImportedTranscriptModel.source == source.value,
                ImportedTranscriptModel.source_id == source_id,
            )
            result = await session.execute(stmt)
            memo_id = result.scalar_one_or_none()
            return str(memo_id) if memo_id is not None else None

    async def upsert_marker(
        self,
        owner_id: str,
        source: TranscriptSource,
        source_id: str,
        memo_id: str,
    ) -> None:
        """Write the marker for a processed transcript (upsert on the natural key)."""
        async for session in self._session_factory():
            stmt = pg_insert(ImportedTranscriptModel).values(
                id=uuid.uuid4(),
                owner_id=uuid.UUID(owner_id),
                source=source.value,
                source_id=source_id,
                memo_id=uuid.UUID(memo_id),
            )
            stmt = stmt.on_conflict_do_update(
                constraint="uq_imported_transcript_owner_source",
                set_={"memo_id": stmt.excluded.memo_id},
            )
            await session.execute(stmt)
            await session.commit()
