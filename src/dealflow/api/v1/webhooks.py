"""Transcript provider webhook receivers.

Fireflies and Granola sign the raw request body with HMAC-SHA256 using a
shared secret. When the secret is configured the signature is mandatory;
a mismatch is rejected with 401 before the body is parsed. Non-completion
events are acknowledged with 200 so the provider does not retry them.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.dealflow.api.deps import get_gateway, get_owner_resolver
from src.dealflow.config import get_settings
from src.dealflow.core.security import verify_webhook_signature
from src.dealflow.ingestion.gateway import InvalidSourceError
from src.dealflow.ingestion.webhooks import (
    WebhookPayloadError,
    parse_fireflies_payload,
    parse_granola_payload,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

FIREFLIES_SIGNATURE_HEADER = "x-fireflies-signature"
GRANOLA_SIGNATURE_HEADER = "x-granola-signature"
GRANOLA_SIGNATURE_PREFIX = "sha256="


def _signature_rejected(
    provider: str, body: bytes, signature: str | None, secret: str, prefix: str = ""
) -> JSONResponse | None:
    if not secret:
        logger.warning("webhook_signature_unchecked", provider=provider, reason="secret_not_set")
        return None
    if verify_webhook_signature(body, signature, secret, prefix=prefix):
        return None
    logger.warning("webhook_signature_invalid", provider=provider)
    return JSONResponse(status_code=401, content={"error": "Invalid webhook signature"})


def _load_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


async def _ingest(gateway: Any, owner_id: str, descriptor, provider: str) -> JSONResponse:
    try:
        job_id = await gateway.ingest(owner_id, descriptor)
    except InvalidSourceError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except Exception as exc:
        logger.error("webhook_ingest_failed", provider=provider, error=str(exc), exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to create job"})
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "jobId": job_id,
            "message": "Transcript queued for processing",
        },
    )


# ── Fireflies ────────────────────────────────────────────────────────────────


@router.get("/fireflies")
async def fireflies_verification(challenge: str | None = Query(None)):
    """Echo the verification challenge Fireflies sends when registering."""
    if challenge:
        return {"challenge": challenge}
    return {"status": "Fireflies webhook endpoint active"}


async def _handle_fireflies(
    request: Request, gateway: Any, resolver: Any, webhook_id: str | None
) -> JSONResponse:
    body = await request.body()
    rejected = _signature_rejected(
        "fireflies",
        body,
        request.headers.get(FIREFLIES_SIGNATURE_HEADER),
        get_settings().FIREFLIES_WEBHOOK_SECRET,
    )
    if rejected is not None:
        return rejected

    try:
        payload = parse_fireflies_payload(_load_json(body))
    except WebhookPayloadError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    if not payload.is_completed:
        return JSONResponse(
            status_code=200,
            content={"ignored": True, "message": "Event type not processed", "eventType": payload.event_type},
        )

    owner_id = await resolver.resolve_fireflies(payload, webhook_id)
    if owner_id is None:
        logger.warning("webhook_owner_unknown", provider="fireflies", meeting_id=payload.meeting_id)
        return JSONResponse(status_code=404, content={"error": "Could not determine user for webhook"})

    return await _ingest(gateway, owner_id, payload.to_descriptor(), "fireflies")


@router.post("/fireflies")
async def fireflies_webhook(
    request: Request,
    gateway: Any = Depends(get_gateway),
    resolver: Any = Depends(get_owner_resolver),
):
    """Fireflies "Transcription completed" notification."""
    return await _handle_fireflies(request, gateway, resolver, None)


@router.post("/fireflies/{webhook_id}")
async def fireflies_webhook_for_integration(
    webhook_id: str,
    request: Request,
    gateway: Any = Depends(get_gateway),
    resolver: Any = Depends(get_owner_resolver),
):
    """Per-integration Fireflies URL; the path id identifies the owner."""
    return await _handle_fireflies(request, gateway, resolver, webhook_id)


# ── Granola ──────────────────────────────────────────────────────────────────


@router.get("/granola")
async def granola_status():
    return {"status": "Granola webhook endpoint active"}


@router.post("/granola")
async def granola_webhook(
    request: Request,
    gateway: Any = Depends(get_gateway),
    resolver: Any = Depends(get_owner_resolver),
):
    """Granola ``meeting.completed`` push carrying the transcript text."""
    body = await request.body()
    rejected = _signature_rejected(
        "granola",
        body,
        request.headers.get(GRANOLA_SIGNATURE_HEADER),
        get_settings().GRANOLA_WEBHOOK_SECRET,
        prefix=GRANOLA_SIGNATURE_PREFIX,
    )
    if rejected is not None:
        return rejected

    try:
        payload = parse_granola_payload(_load_json(body))
    except WebhookPayloadError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    if not payload.is_completed:
        return JSONResponse(
            status_code=200,
            content={"ignored": True, "message": "Event type not processed", "eventType": payload.event},
        )

    owner_id = await resolver.resolve_granola(payload)
    if owner_id is None:
        logger.warning("webhook_owner_unknown", provider="granola", meeting_id=payload.meeting_id)
        return JSONResponse(status_code=404, content={"error": "Could not determine user for webhook"})

    return await _ingest(gateway, owner_id, payload.to_descriptor(), "granola")
