"""Job read endpoints used by the dashboard to poll processing progress."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.dealflow.api.deps import Owner, get_current_owner, get_job_repository, is_valid_id
from src.dealflow.jobs.schemas import Job, JobStatus

router = APIRouter(prefix="/jobs", tags=["jobs"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class JobResponse(BaseModel):
    """Job record in the dashboard's camelCase shape."""

    id: str
    userId: str
    source: str
    sourceId: str | None = None
    status: str
    currentStep: str
    progress: int
    metadata: dict = Field(default_factory=dict)
    result: dict = Field(default_factory=dict)
    error: str | None = None
    createdAt: str
    updatedAt: str

    @classmethod
    def from_job(cls, job: Job) -> JobResponse:
        metadata = job.metadata.model_dump(mode="json", exclude={"transcript_content"})
        return cls(
            id=job.id,
            userId=job.owner_id,
            source=job.source.value,
            sourceId=job.source_id,
            status=job.status.value,
            currentStep=job.current_step.value,
            progress=job.progress,
            metadata=metadata,
            result=job.result,
            error=job.error,
            createdAt=job.created_at.isoformat(),
            updatedAt=job.updated_at.isoformat(),
        )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    status_filter: JobStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    owner: Owner = Depends(get_current_owner),
    jobs: Any = Depends(get_job_repository),
) -> list[JobResponse]:
    """List the owner's jobs, newest first."""
    records = await jobs.list_jobs(owner.id, status=status_filter, limit=limit)
    return [JobResponse.from_job(job) for job in records]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    owner: Owner = Depends(get_current_owner),
    jobs: Any = Depends(get_job_repository),
) -> JobResponse:
    """Fetch one job; 404 when it does not exist or belongs to someone else."""
    job = await jobs.get_job_for_owner(owner.id, job_id) if is_valid_id(job_id) else None
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResponse.from_job(job)
