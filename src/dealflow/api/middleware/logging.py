"""Request logging and structlog setup.

Each request gets a request id (the caller's ``X-Request-ID`` when sent,
otherwise a fresh UUID) bound into structlog's context variables together
with the owner id from a Bearer JWT. Every log line written while the
request is in flight, including those from the pipeline, carries both.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.dealflow.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def configure_structlog() -> None:
    """JSON lines in production, console rendering everywhere else."""
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _owner_from_header(auth_header: str | None) -> str | None:
    # Worker secrets and bad tokens are logged without an owner
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    settings = get_settings()
    try:
        claims = jwt.decode(
            auth_header.removeprefix("Bearer "),
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        return None
    return claims.get("sub")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request context for the duration of a request and logs its outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            owner_id=_owner_from_header(request.headers.get("Authorization")),
        )

        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            logger.log(
                _level_for(status_code),
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            structlog.contextvars.clear_contextvars()
