"""FastAPI dependencies for authentication and app.state services.

Owner endpoints authenticate with a Bearer JWT issued by the dashboard
(owner id in ``sub``). Internal trigger endpoints authenticate with the
shared WORKER_SECRET. Services are created in the lifespan and stored on
app.state; a missing one means startup degraded and yields 503.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from src.dealflow.core.security import verify_token, verify_worker_secret


class Owner(BaseModel):
    """The authenticated user on whose behalf a request runs."""

    id: str
    name: str | None = None
    email: str | None = None


async def get_current_owner(request: Request) -> Owner:
    """Extract and validate the owner from the Authorization header.

    Raises:
        HTTPException(401): Missing, invalid, or subject-less token.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    owner_id = payload.get("sub")
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )
    return Owner(id=str(owner_id), name=payload.get("name"), email=payload.get("email"))


async def require_worker_secret(request: Request) -> None:
    """Reject requests without ``Authorization: Bearer <WORKER_SECRET>``."""
    if not verify_worker_secret(request.headers.get("Authorization")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_state_service(request: Request, name: str, label: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_gateway(request: Request) -> Any:
    return get_state_service(request, "ingestion_gateway", "Ingestion gateway")


def get_job_repository(request: Request) -> Any:
    return get_state_service(request, "job_repository", "Job repository")


def get_pipeline(request: Request) -> Any:
    return get_state_service(request, "pipeline", "Pipeline")


def get_worker_pool(request: Request) -> Any:
    return get_state_service(request, "worker_pool", "Worker pool")


def get_dispatcher(request: Request) -> Any:
    return get_state_service(request, "dispatcher", "Dispatcher")


def get_backfill(request: Request) -> Any:
    return get_state_service(request, "backfill", "Backfill")


def get_owner_resolver(request: Request) -> Any:
    return get_state_service(request, "owner_resolver", "Webhook owner resolver")


# Alias for cleaner endpoint signatures
require_owner = Depends(get_current_owner)


def is_valid_id(value: str | None) -> bool:
    """True when ``value`` is a UUID string (all persisted ids are UUIDs)."""
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True
