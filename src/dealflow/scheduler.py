"""Background scheduling for pipeline housekeeping.

Defines async task functions for stale-job recovery, draining pending
jobs through the worker pool, the stale-relationship reminder scan, and
(when configured) the Fireflies backfill.
Tasks are decoupled from the loop that runs them so tests can call them
directly.
"""

from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger(__name__)

# Interval defaults (seconds); overridden from settings in main.py
TASK_INTERVALS = {
    "reap_stale_jobs": 5 * 60,          # 5 minutes
    "drain_pending_jobs": 60,           # 1 minute
    "scan_stale_relationships": 24 * 60 * 60,  # 24 hours
    "backfill_fireflies": 6 * 60 * 60,  # 6 hours
}


async def setup_pipeline_scheduler(
    reaper,
    worker_pool,
    stale_scanner,
    batch_size: int = 3,
    backfill=None,
) -> dict:
    """Configure background tasks for the pipeline.

    Each task wraps its work in try/except so one failure never stops the
    loop, logs the result via structlog, and returns a count.

    Args:
        reaper: StaleJobReaper resetting expired leases.
        worker_pool: WorkerPool draining pending jobs.
        stale_scanner: StaleRelationshipScanner for reconnect reminders.
        batch_size: Pending jobs picked up per drain.
        backfill: FirefliesBackfill; the task is only scheduled when given.

    Returns:
        Dict mapping task name to async callable.
    """

    async def reap_stale_jobs_task():
        try:
            count = await reaper.reap()
            logger.info("scheduler.stale_jobs_reaped", count=count)
            return count
        except Exception:
            logger.warning("scheduler.reap_failed", exc_info=True)
            return 0

    async def drain_pending_jobs_task():
        """Process a batch of pending jobs (the worker pool reaps first)."""
        try:
            report = await worker_pool.run_batch(limit=batch_size)
            if report.processed or report.recovered_stale:
                logger.info(
                    "scheduler.pending_jobs_drained",
                    processed=report.processed,
                    recovered_stale=report.recovered_stale,
                )
            return report.processed
        except Exception:
            logger.warning("scheduler.drain_failed", exc_info=True)
            return 0

    async def scan_stale_relationships_task():
        try:
            count = await stale_scanner.scan_all()
            logger.info("scheduler.stale_relationships_scanned", reminders_created=count)
            return count
        except Exception:
            logger.warning("scheduler.stale_scan_failed", exc_info=True)
            return 0

    async def backfill_fireflies_task():
        try:
            report = await backfill.run()
            logger.info(
                "scheduler.fireflies_backfilled",
                queued=report.queued,
                skipped=report.skipped,
                errors=report.errors,
            )
            return report.queued
        except Exception:
            logger.warning("scheduler.backfill_failed", exc_info=True)
            return 0

    tasks = {
        "reap_stale_jobs": reap_stale_jobs_task,
        "drain_pending_jobs": drain_pending_jobs_task,
        "scan_stale_relationships": scan_stale_relationships_task,
    }
    if backfill is not None:
        tasks["backfill_fireflies"] = backfill_fireflies_task
    return tasks


async def start_scheduler_background(
    tasks: dict, app_state, intervals: dict | None = None
) -> None:
    """Start scheduler tasks as background asyncio loops.

    Task handles are stored on ``app_state.pipeline_scheduler_tasks`` so
    the lifespan can cancel them at shutdown.

    Args:
        tasks: Dict mapping task name to async callable.
        app_state: FastAPI app.state object for storing task references.
        intervals: Per-task interval overrides in seconds.
    """
    configured = {**TASK_INTERVALS, **(intervals or {})}
    background_tasks: list[asyncio.Task] = []

    for task_name, task_fn in tasks.items():
        interval = configured.get(task_name, 3600)

        async def _loop(fn=task_fn, name=task_name, sleep=interval):
            while True:
                try:
                    await asyncio.sleep(sleep)
                    await fn()
                except asyncio.CancelledError:
                    logger.info("scheduler.task_cancelled", task=name)
                    break
                except Exception:
                    logger.warning("scheduler.task_loop_error", task=name, exc_info=True)

        bg_task = asyncio.create_task(_loop(), name=f"pipeline_scheduler_{task_name}")
        background_tasks.append(bg_task)

    app_state.pipeline_scheduler_tasks = background_tasks

    logger.info(
        "scheduler.background_tasks_started",
        task_count=len(background_tasks),
        tasks=list(tasks.keys()),
    )
