"""Provider webhook payloads and owner resolution.

Fireflies pushes a notification only (the transcript is pulled later by
meeting id); Granola pushes the full transcript text. Both are turned into
a SourceDescriptor so the API layer can hand them to the gateway.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from src.dealflow.integrations.schemas import IntegrationProvider
from src.dealflow.jobs.schemas import Participant, SourceDescriptor, TranscriptSource

if TYPE_CHECKING:
    from src.dealflow.integrations.repository import IntegrationRepository

logger = structlog.get_logger(__name__)

FIREFLIES_COMPLETED = "Transcription completed"
GRANOLA_COMPLETED = "meeting.completed"


class WebhookPayloadError(ValueError):
    """The webhook body does not have the provider's expected shape."""


def _parse_date(value: Any) -> datetime | None:
    if isinstance(value, (int, float)):
        # Fireflies sends epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _duration(value: Any) -> int | None:
    try:
        return int(float(value)) if value is not None else None
    except (TypeError, ValueError):
        return None


def _participants(raw: Any) -> list[Participant]:
    participants: list[Participant] = []
    if not isinstance(raw, list):
        return participants
    for item in raw:
        if isinstance(item, str):
            participants.append(Participant(name=item.strip() or "Unknown"))
        elif isinstance(item, dict):
            participants.append(
                Participant(
                    name=str(item.get("name") or "Unknown"),
                    email=item.get("email") or None,
                )
            )
        else:
            participants.append(Participant(name="Unknown"))
    return participants


# ── Fireflies ────────────────────────────────────────────────────────────────


class FirefliesWebhook(BaseModel):
    meeting_id: str
    event_type: str = ""
    client_reference_id: str | None = None
    webhook_id: str | None = None
    title: str | None = None
    meeting_date: datetime | None = None
    duration: int | None = None
    participants: list[Participant] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.event_type == FIREFLIES_COMPLETED

    def to_descriptor(self) -> SourceDescriptor:
        return SourceDescriptor(
            source=TranscriptSource.FIREFLIES,
            transcript_id=self.meeting_id,
            title=self.title or "Fireflies Meeting",
            participants=self.participants,
            meeting_date=self.meeting_date,
            duration=self.duration,
            raw_payload=self.raw,
        )


def parse_fireflies_payload(body: Any) -> FirefliesWebhook:
    """Validate a Fireflies webhook body.

    Raises:
        WebhookPayloadError: Not an object, or ``meetingId`` missing.
    """
    if not isinstance(body, dict):
        raise WebhookPayloadError("Invalid payload format")
    meeting_id = body.get("meetingId")
    if not isinstance(meeting_id, str) or not meeting_id:
        raise WebhookPayloadError("Invalid payload format")

    transcript = body.get("transcript") if isinstance(body.get("transcript"), dict) else {}
    reference = body.get("clientReferenceId")
    webhook_id = body.get("webhookId")
    return FirefliesWebhook(
        meeting_id=meeting_id,
        event_type=body.get("eventType") if isinstance(body.get("eventType"), str) else "",
        client_reference_id=reference if isinstance(reference, str) and reference else None,
        webhook_id=webhook_id if isinstance(webhook_id, str) and webhook_id else None,
        title=transcript.get("title") or None,
        meeting_date=_parse_date(transcript.get("date")),
        duration=_duration(transcript.get("duration")),
        participants=_participants(transcript.get("participants")),
        raw=body,
    )


# ── Granola ──────────────────────────────────────────────────────────────────


class GranolaWebhook(BaseModel):
    event: str
    meeting_id: str
    user_id: str | None = None
    title: str = "Meeting"
    content: str = ""
    meeting_date: datetime | None = None
    duration: int | None = None
    participants: list[Participant] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.event == GRANOLA_COMPLETED

    def to_descriptor(self) -> SourceDescriptor:
        return SourceDescriptor(
            source=TranscriptSource.GRANOLA,
            transcript_id=self.meeting_id,
            content=self.content,
            title=self.title,
            participants=self.participants,
            meeting_date=self.meeting_date,
            duration=self.duration,
            raw_payload=self.raw,
        )


def parse_granola_payload(body: Any) -> GranolaWebhook:
    """Validate a Granola webhook body.

    Raises:
        WebhookPayloadError: ``event``, ``meetingId`` or ``transcript`` missing.
    """
    if not isinstance(body, dict):
        raise WebhookPayloadError("Invalid payload format")
    event = body.get("event")
    meeting_id = body.get("meetingId")
    transcript = body.get("transcript")
    if not event or not meeting_id or not isinstance(transcript, dict):
        raise WebhookPayloadError("Invalid payload format")

    user_id = body.get("userId")
    return GranolaWebhook(
        event=str(event),
        meeting_id=str(meeting_id),
        user_id=str(user_id) if user_id else None,
        title=transcript.get("title") or "Meeting",
        content=transcript.get("content") or "",
        meeting_date=_parse_date(transcript.get("date")),
        duration=_duration(transcript.get("duration")),
        participants=_participants(transcript.get("participants")),
        raw=body,
    )


# ── Owner Resolution ─────────────────────────────────────────────────────────


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class WebhookOwnerResolver:
    """Maps provider-side identifiers to the owning user.

    Args:
        integrations: IntegrationRepository for credential lookups.
    """

    def __init__(self, integrations: IntegrationRepository) -> None:
        self._integrations = integrations

    async def _by_credential(
        self, provider: IntegrationProvider, key: str, value: str | None
    ) -> str | None:
        if not value:
            return None
        integration = await self._integrations.find_by_credential(provider, key, value)
        return integration.owner_id if integration else None

    async def resolve_fireflies(
        self, payload: FirefliesWebhook, webhook_id: str | None = None
    ) -> str | None:
        """Owner from the path webhook id, then ``clientReferenceId``, then payload ids."""
        owner_id = await self._by_credential(
            IntegrationProvider.FIREFLIES, "webhook_id", webhook_id
        )
        if owner_id:
            return owner_id
        if payload.client_reference_id and _is_uuid(payload.client_reference_id):
            return payload.client_reference_id
        owner_id = await self._by_credential(
            IntegrationProvider.FIREFLIES, "webhook_id", payload.webhook_id
        )
        if owner_id:
            return owner_id
        return await self._by_credential(
            IntegrationProvider.FIREFLIES,
            "external_user_id",
            payload.raw.get("userId") if isinstance(payload.raw.get("userId"), str) else None,
        )

    async def resolve_granola(self, payload: GranolaWebhook) -> str | None:
        """Owner from ``external_user_id``, then from a participant's email."""
        owner_id = await self._by_credential(
            IntegrationProvider.GRANOLA, "external_user_id", payload.user_id
        )
        if owner_id:
            return owner_id
        for participant in payload.participants:
            owner_id = await self._by_credential(
                IntegrationProvider.GRANOLA, "email", participant.email
            )
            if owner_id:
                return owner_id
        logger.info("granola_owner_unresolved", meeting_id=payload.meeting_id)
        return None
