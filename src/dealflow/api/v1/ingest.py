"""Authenticated transcript ingestion endpoint.

Accepts a source descriptor from the dashboard (manual paste, upload, or a
provider transcript id), creates the pending job, and returns its id
immediately. Processing happens asynchronously.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from src.dealflow.api.deps import Owner, get_current_owner, get_gateway
from src.dealflow.ingestion.gateway import InvalidSourceError, parse_descriptor

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["ingest"])


@router.post("/ingest", status_code=status.HTTP_202_ACCEPTED)
async def ingest_transcript(
    request: Request,
    owner: Owner = Depends(get_current_owner),
    gateway: Any = Depends(get_gateway),
):
    """Queue a transcript for processing.

    Body: ``{source, transcriptId?, content?, title?, participants?, meetingDate?}``.
    Returns 202 ``{jobId}``; 400 ``{error}`` for an invalid request; 500
    ``{error}`` when the job could not be created.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    if not isinstance(body, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    try:
        descriptor = parse_descriptor(body)
        if owner.name:
            descriptor.raw_payload = {**descriptor.raw_payload, "owner_name": owner.name}
        job_id = await gateway.ingest(owner.id, descriptor)
    except InvalidSourceError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except Exception as exc:
        logger.error("ingest_failed", owner_id=owner.id, error=str(exc), exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to create job"})

    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"jobId": job_id})
