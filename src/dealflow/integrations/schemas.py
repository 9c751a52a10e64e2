"""Pydantic v2 schemas for per-user integrations with external providers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class IntegrationProvider(str, Enum):
    """External services a user can connect."""

    FIREFLIES = "fireflies"
    GRANOLA = "granola"
    GOOGLE_DRIVE = "google_drive"


class IntegrationStatus(str, Enum):
    """Connection health surfaced in the settings UI."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class Integration(BaseModel):
    """A user's stored connection to one provider.

    ``credentials`` is provider specific: ``api_key`` for Fireflies,
    ``access_token``/``refresh_token``/``drive_folder_id`` for Google Drive,
    ``webhook_id``/``external_user_id`` for webhook owner resolution.
    """

    id: str
    owner_id: str
    provider: IntegrationProvider
    credentials: dict[str, Any] = Field(default_factory=dict)
    status: IntegrationStatus = IntegrationStatus.ACTIVE
    error_message: str | None = None
    last_sync_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
