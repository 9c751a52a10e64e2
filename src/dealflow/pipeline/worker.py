"""WorkerPool -- batch processing of pending jobs with bounded concurrency.

Each batch first runs the stale-job reaper (so orphaned jobs rejoin the
queue) and then executes up to ``limit`` pending jobs, at most
``max_concurrent`` at a time. Jobs past the limit stay pending for the
next batch; the semaphore is the only backpressure mechanism.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.dealflow.jobs.schemas import Trigger
from src.dealflow.pipeline.runner import PipelineOutcome

if TYPE_CHECKING:
    from src.dealflow.jobs.reaper import StaleJobReaper
    from src.dealflow.jobs.repository import JobRepository
    from src.dealflow.pipeline.runner import TranscriptPipeline

logger = structlog.get_logger(__name__)


class JobRunResult(BaseModel):
    job_id: str
    success: bool
    memo_id: str | None = None
    skipped: bool = False
    error: str | None = None


class WorkerReport(BaseModel):
    recovered_stale: int = 0
    processed: int = 0
    results: list[JobRunResult] = Field(default_factory=list)


class WorkerPool:
    """Runs pending jobs through the pipeline.

    Args:
        jobs: JobRepository for listing pending jobs.
        pipeline: TranscriptPipeline executing each job.
        reaper: StaleJobReaper run before every batch.
        max_concurrent: Semaphore size (3-5 recommended).
    """

    def __init__(
        self,
        jobs: JobRepository,
        pipeline: TranscriptPipeline,
        reaper: StaleJobReaper,
        max_concurrent: int = 3,
    ) -> None:
        self._jobs = jobs
        self._pipeline = pipeline
        self._reaper = reaper
        self._max_concurrent = max(1, max_concurrent)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    async def run_batch(
        self, limit: int = 3, trigger: Trigger = Trigger.WORKER
    ) -> WorkerReport:
        """Reap stale jobs, then process up to ``limit`` pending ones."""
        recovered = await self._reaper.reap()
        pending = await self._jobs.list_pending_jobs(limit=limit)
        if not pending:
            return WorkerReport(recovered_stale=recovered)

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _run(job_id: str) -> JobRunResult:
            async with semaphore:
                try:
                    outcome = await self._pipeline.run(job_id, trigger)
                except Exception as exc:
                    logger.error("worker_job_crashed", job_id=job_id, exc_info=True)
                    outcome = PipelineOutcome(success=False, error=str(exc))
            return JobRunResult(job_id=job_id, **outcome.model_dump())

        results = await asyncio.gather(*(_run(job.id) for job in pending))

        logger.info(
            "worker_batch_complete",
            recovered_stale=recovered,
            processed=len(results),
            succeeded=sum(1 for r in results if r.success),
        )
        return WorkerReport(
            recovered_stale=recovered,
            processed=len(results),
            results=list(results),
        )
