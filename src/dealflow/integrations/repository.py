"""Integration repository -- credential lookup and connection status updates."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.dealflow.integrations.models import IntegrationModel
from src.dealflow.integrations.schemas import (
    Integration,
    IntegrationProvider,
    IntegrationStatus,
)

logger = structlog.get_logger(__name__)


def _model_to_integration(model: IntegrationModel) -> Integration:
    """Convert IntegrationModel to Integration schema."""
    return Integration(
        id=str(model.id),
        owner_id=str(model.owner_id),
        provider=IntegrationProvider(model.provider),
        credentials=model.credentials_data or {},
        status=IntegrationStatus(model.status),
        error_message=model.error_message,
        last_sync_at=model.last_sync_at,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


class IntegrationRepository:
    """Async access to per-user provider integrations.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_integration(
        self, owner_id: str, provider: IntegrationProvider
    ) -> Integration | None:
        async for session in self._session_factory():
            stmt = select(IntegrationModel).where(
                IntegrationModel.owner_id == uuid.UUID(owner_id),
                IntegrationModel.provider == provider.value,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_integration(model) if model else None

    async def list_active(self, provider: IntegrationProvider) -> list[Integration]:
        """Every owner's active connection to ``provider``."""
        async for session in self._session_factory():
            stmt = (
                select(IntegrationModel)
                .where(
                    IntegrationModel.provider == provider.value,
                    IntegrationModel.status == IntegrationStatus.ACTIVE.value,
                )
                .order_by(IntegrationModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_integration(m) for m in result.scalars().all()]

    async def find_by_credential(
        self, provider: IntegrationProvider, key: str, value: str
    ) -> Integration | None:
        """Find the integration whose credentials hold ``key == value``.

        Used by webhook receivers to resolve the owning user from a
        provider-side identifier.
        """
        async for session in self._session_factory():
            stmt = (
                select(IntegrationModel)
                .where(
                    IntegrationModel.provider == provider.value,
                    IntegrationModel.credentials_data[key].as_string() == value,
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_integration(model) if model else None

    async def set_status(
        self,
        owner_id: str,
        provider: IntegrationProvider,
        status: IntegrationStatus,
        error_message: str | None = None,
    ) -> None:
        """Update connection status; a successful status stamps last_sync_at."""
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "status": status.value,
            "error_message": error_message,
            "updated_at": now,
        }
        if status is IntegrationStatus.ACTIVE:
            values["last_sync_at"] = now

        async for session in self._session_factory():
            stmt = (
                update(IntegrationModel)
                .where(
                    IntegrationModel.owner_id == uuid.UUID(owner_id),
                    IntegrationModel.provider == provider.value,
                )
                .values(**values)
            )
            await session.execute(stmt)
            await session.commit()

        if status is IntegrationStatus.ERROR:
            logger.warning(
                "integration_status_error",
                owner_id=owner_id,
                provider=provider.value,
                error=error_message,
            )

    async def update_credentials(
        self,
        owner_id: str,
        provider: IntegrationProvider,
        updates: dict[str, Any],
    ) -> None:
        """Merge ``updates`` into the stored credentials."""
        async for session in self._session_factory():
            stmt = select(IntegrationModel).where(
                IntegrationModel.owner_id == uuid.UUID(owner_id),
                IntegrationModel.provider == provider.value,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return
            model.credentials_data = {**(model.credentials_data or {}), **updates}
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
