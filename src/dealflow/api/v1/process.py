"""Internal processing triggers.

- ``POST /process/direct``: run one job now (the dispatcher's fallback path).
- ``GET|POST /process/worker``: drain a batch of pending jobs (cron).
- ``POST /process/retry``: the owner re-submits their pending jobs.
- ``POST /process/backfill``: queue recent Fireflies transcripts that never
  arrived by webhook (optionally for one ``userId``).

Direct, worker and backfill calls authenticate with the shared WORKER_SECRET.
"""

from __future__ import annotations

import time
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.dealflow.api.deps import (
    Owner,
    get_backfill,
    get_current_owner,
    get_dispatcher,
    get_job_repository,
    get_pipeline,
    get_worker_pool,
    is_valid_id,
    require_worker_secret,
)
from src.dealflow.jobs.schemas import Trigger

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/process", tags=["process"])

DEFAULT_BATCH = 3
MAX_BATCH = 10
RETRY_LIMIT = 50


@router.post("/direct", dependencies=[Depends(require_worker_secret)])
async def process_direct(
    request: Request,
    jobs: Any = Depends(get_job_repository),
    pipeline: Any = Depends(get_pipeline),
):
    """Run one job through the pipeline and wait for the outcome."""
    try:
        body = await request.json()
    except ValueError:
        body = {}
    job_id = body.get("jobId") if isinstance(body, dict) else None
    if not job_id:
        return JSONResponse(status_code=400, content={"error": "jobId is required"})

    if not is_valid_id(job_id) or await jobs.get_job(job_id) is None:
        return JSONResponse(status_code=404, content={"error": "Job not found"})

    outcome = await pipeline.run(job_id, Trigger.DIRECT)
    content: dict[str, Any] = {"success": outcome.success}
    if outcome.memo_id:
        content["memoId"] = outcome.memo_id
    if outcome.skipped:
        content["skipped"] = True
    if outcome.error:
        content["error"] = outcome.error
    return content


@router.api_route(
    "/worker", methods=["GET", "POST"], dependencies=[Depends(require_worker_secret)]
)
async def process_worker(
    limit: int = Query(DEFAULT_BATCH),
    worker_pool: Any = Depends(get_worker_pool),
):
    """Reap stale jobs and process up to ``limit`` (clamped 1..10) pending ones."""
    batch = min(max(limit, 1), MAX_BATCH)
    report = await worker_pool.run_batch(limit=batch, trigger=Trigger.WORKER)
    return {
        "ok": True,
        "recoveredStale": report.recovered_stale,
        "processed": report.processed,
        "results": [
            {
                "jobId": r.job_id,
                "success": r.success,
                "memoId": r.memo_id,
                "skipped": r.skipped,
                "error": r.error,
            }
            for r in report.results
        ],
    }


@router.post("/retry")
async def retry_pending(
    owner: Owner = Depends(get_current_owner),
    jobs: Any = Depends(get_job_repository),
    dispatcher: Any = Depends(get_dispatcher),
):
    """Re-submit every pending job of the owner through the direct path."""
    pending = await jobs.list_pending_jobs(limit=RETRY_LIMIT, owner_id=owner.id)
    if not pending:
        return {"message": "No pending jobs to retry", "processed": 0, "total": 0, "errors": []}

    processed = 0
    errors: list[str] = []
    for job in pending:
        try:
            await dispatcher.post_direct(job.id)
        except Exception as exc:
            errors.append(f"Job {job.id}: {str(exc) or type(exc).__name__}")
            continue
        processed += 1

    logger.info(
        "pending_jobs_retried",
        owner_id=owner.id,
        processed=processed,
        total=len(pending),
    )
    return {
        "message": f"Processed {processed} of {len(pending)} jobs",
        "processed": processed,
        "total": len(pending),
        "errors": errors,
    }


@router.post("/backfill", dependencies=[Depends(require_worker_secret)])
async def process_backfill(
    request: Request,
    backfill: Any = Depends(get_backfill),
):
    """Queue recent Fireflies transcripts that have no memo and no open job."""
    try:
        body = await request.json()
    except ValueError:
        body = {}
    owner_id = body.get("userId") if isinstance(body, dict) else None
    if owner_id is not None and not is_valid_id(owner_id):
        return JSONResponse(status_code=400, content={"error": "Invalid userId"})

    started = time.monotonic()
    report = await backfill.run(owner_id=owner_id)
    return {
        "success": True,
        "processed": report.queued,
        "skipped": report.skipped,
        "errors": report.errors,
        "processingTime": round((time.monotonic() - started) * 1000),
        "details": [owner.to_dict() for owner in report.owners],
    }
