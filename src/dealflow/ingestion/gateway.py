"""IngestionGateway -- validates a source descriptor and creates the job.

Job creation is the only failure surfaced to callers. Dispatch runs after
the job is durable, and a dispatch failure is logged and left to the
worker pool, which picks up any job still pending.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from src.dealflow.jobs.schemas import (
    JobCreate,
    JobMetadata,
    Participant,
    SourceDescriptor,
    TranscriptSource,
)

if TYPE_CHECKING:
    from src.dealflow.ingestion.dispatcher import JobDispatcher
    from src.dealflow.jobs.repository import JobRepository

logger = structlog.get_logger(__name__)


class InvalidSourceError(ValueError):
    """The ingestion request does not describe a processable transcript."""


def _participants(raw: Any) -> list[Participant]:
    participants: list[Participant] = []
    for item in raw or []:
        if isinstance(item, str) and item.strip():
            participants.append(Participant(name=item.strip()))
        elif isinstance(item, dict) and str(item.get("name") or "").strip():
            participants.append(
                Participant(name=str(item["name"]).strip(), email=item.get("email") or None)
            )
    return participants


def parse_descriptor(payload: dict[str, Any]) -> SourceDescriptor:
    """Build a SourceDescriptor from an API body (camelCase keys).

    Raises:
        InvalidSourceError: Unknown source or malformed fields.
    """
    source = payload.get("source")
    try:
        source_enum = TranscriptSource(source)
    except ValueError as exc:
        raise InvalidSourceError(f"Unknown transcript source: {source!r}") from exc

    meeting_date = payload.get("meetingDate") or payload.get("meeting_date")
    try:
        return SourceDescriptor(
            source=source_enum,
            transcript_id=payload.get("transcriptId") or payload.get("transcript_id"),
            content=payload.get("content"),
            title=payload.get("title"),
            participants=_participants(payload.get("participants")),
            meeting_date=meeting_date or None,
            duration=payload.get("duration"),
            raw_payload=payload.get("rawPayload") or {},
        )
    except ValidationError as exc:
        raise InvalidSourceError(f"Invalid ingestion request: {exc.errors()[0]['msg']}") from exc


def validate_descriptor(descriptor: SourceDescriptor) -> None:
    """Check the source-specific requirements.

    Raises:
        InvalidSourceError: Content missing for a push source, or neither
            id nor content for a pull source.
    """
    has_content = bool(descriptor.content and descriptor.content.strip())
    if descriptor.source.requires_content and not has_content:
        raise InvalidSourceError(
            f"Transcript content is required for source '{descriptor.source.value}'"
        )
    if descriptor.source.requires_pull and not (descriptor.transcript_id or has_content):
        raise InvalidSourceError(
            f"A transcript id or content is required for source '{descriptor.source.value}'"
        )


class IngestionGateway:
    """Creates pending jobs and triggers their processing.

    Args:
        jobs: JobRepository for job creation.
        dispatcher: JobDispatcher that hands new jobs to the pipeline.
    """

    def __init__(self, jobs: JobRepository, dispatcher: JobDispatcher) -> None:
        self._jobs = jobs
        self._dispatcher = dispatcher

    async def ingest(self, owner_id: str, descriptor: SourceDescriptor) -> str:
        """Persist a pending job for ``descriptor`` and dispatch it.

        Returns:
            The new job id.

        Raises:
            InvalidSourceError: The descriptor failed validation.
            Exception: Job creation failed (propagated from the repository).
        """
        validate_descriptor(descriptor)

        meeting_date: datetime | None = descriptor.meeting_date
        job = await self._jobs.create_job(
            owner_id,
            JobCreate(
                source=descriptor.source,
                source_id=descriptor.transcript_id,
                metadata=JobMetadata(
                    title=descriptor.title,
                    transcript_content=descriptor.content,
                    participants=descriptor.participants,
                    meeting_date=meeting_date,
                    duration=descriptor.duration,
                    external_id=descriptor.transcript_id,
                    raw_payload=descriptor.raw_payload,
                ),
            ),
        )
        logger.info(
            "transcript_ingested",
            job_id=job.id,
            owner_id=owner_id,
            source=descriptor.source.value,
            source_id=descriptor.transcript_id,
        )

        try:
            await self._dispatcher.dispatch(job)
        except Exception:
            logger.warning("job_dispatch_failed", job_id=job.id, exc_info=True)

        return job.id
