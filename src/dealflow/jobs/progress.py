"""ProgressReporter -- persists step/percentage checkpoints for one job run.

Checkpoints are fixed per step so the dashboard progress bar means the
same thing for every job. The reporter never persists a value lower than
one it already reported, which keeps progress monotonic within a run even
if stages are reordered or skipped.

Intermediate writes are best-effort (a failed heartbeat write must not
abort a run that is otherwise healthy); terminal writes propagate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from src.dealflow.jobs.schemas import ProcessingStep

if TYPE_CHECKING:
    from src.dealflow.jobs.repository import JobRepository

logger = structlog.get_logger(__name__)

# ── Checkpoints ──────────────────────────────────────────────────────────────

STEP_PROGRESS: dict[ProcessingStep, int] = {
    ProcessingStep.QUEUED: 0,
    ProcessingStep.FETCHING: 10,
    ProcessingStep.CLASSIFYING: 25,
    ProcessingStep.RESOLVING_COMPANY: 40,
    ProcessingStep.GENERATING: 60,
    ProcessingStep.SAVING: 75,
    ProcessingStep.EXTRACTING: 85,
    ProcessingStep.FILING: 95,
    ProcessingStep.COMPLETED: 100,
}


class ProgressReporter:
    """Reports the progress of a single job run.

    Args:
        repository: JobRepository used for persistence.
        job_id: Job being executed.
    """

    def __init__(self, repository: JobRepository, job_id: str) -> None:
        self._repository = repository
        self._job_id = job_id
        self._progress = 0
        self._step = ProcessingStep.QUEUED
        self.history: list[int] = []

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def step(self) -> ProcessingStep:
        return self._step

    async def advance(self, step: ProcessingStep) -> int:
        """Move to ``step`` and persist its checkpoint.

        Args:
            step: Non-terminal step being entered.

        Returns:
            The progress value now recorded for the job.
        """
        if step in (ProcessingStep.COMPLETED, ProcessingStep.FAILED):
            msg = f"Terminal step {step.value} must be reported via complete()/fail()"
            raise ValueError(msg)

        self._progress = max(self._progress, STEP_PROGRESS[step])
        self._step = step
        self.history.append(self._progress)

        try:
            await self._repository.update_progress(self._job_id, step, self._progress)
        except Exception:
            logger.warning(
                "job_progress_write_failed",
                job_id=self._job_id,
                step=step.value,
                progress=self._progress,
                exc_info=True,
            )
        return self._progress

    async def complete(self, result: dict[str, Any]) -> None:
        """Mark the job completed at 100%."""
        self._progress = 100
        self._step = ProcessingStep.COMPLETED
        self.history.append(self._progress)
        await self._repository.complete_job(self._job_id, result)

    async def fail(self, error: str) -> None:
        """Mark the job failed at the last reported progress."""
        self._step = ProcessingStep.FAILED
        self.history.append(self._progress)
        await self._repository.fail_job(self._job_id, error, self._progress)
