"""Liveness (/health) and readiness (/health/ready) probes.

Readiness requires the database, and Redis only while the event bus is
enabled. A missing LLM key is reported but does not fail the probe, since
jobs still queue and can be processed once keys are configured.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.dealflow.config import Settings, get_settings
from src.dealflow.core.database import get_engine
from src.dealflow.core.redis import get_redis_pool

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

# Checks whose failure makes the service unready
_REQUIRED = {"database": ("ok",), "redis": ("ok", "disabled")}


@router.get("/health")
async def health_check():
    return {"status": "ok", "environment": get_settings().ENVIRONMENT.value}


async def _database() -> tuple[str, str | None]:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return "error", str(exc)
    return "ok", None


async def _redis(settings: Settings) -> tuple[str, str | None]:
    if not settings.EVENT_BUS_ENABLED:
        return "disabled", None
    try:
        if not await get_redis_pool().ping():
            return "error", "PING did not return PONG"
    except Exception as exc:
        return "error", str(exc)
    return "ok", None


def _llm_keys(settings: Settings) -> str:
    return "ok" if settings.ANTHROPIC_API_KEY or settings.OPENAI_API_KEY else "no_keys"


@router.get("/health/ready")
async def readiness_check():
    """200 with ``ready`` when required checks pass, 503 with ``degraded`` otherwise."""
    settings = get_settings()
    (db_state, db_error), (redis_state, redis_error) = await asyncio.gather(
        _database(), _redis(settings)
    )

    checks: dict[str, str] = {
        "database": db_state,
        "redis": redis_state,
        "litellm": _llm_keys(settings),
    }
    if db_error:
        checks["database_error"] = db_error
    if redis_error:
        checks["redis_error"] = redis_error

    ready = all(checks[name] in allowed for name, allowed in _REQUIRED.items())
    if not ready:
        logger.warning("readiness_degraded", checks=checks)

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
