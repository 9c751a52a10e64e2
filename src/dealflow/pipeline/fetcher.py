"""TranscriptFetcher -- resolves a job to transcript text.

Content supplied with the trigger is used as-is. Otherwise pull sources
are fetched from the provider with the owner's stored credential, and the
integration's status reflects the outcome so the settings UI can show a
broken connection. Fetch failures are critical: they fail the job.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.dealflow.integrations.fireflies import MissingCredentialError, TranscriptFetchError
from src.dealflow.integrations.schemas import IntegrationProvider, IntegrationStatus
from src.dealflow.jobs.schemas import Job, TranscriptSource

if TYPE_CHECKING:
    from src.dealflow.integrations.fireflies import FirefliesClient
    from src.dealflow.integrations.repository import IntegrationRepository

logger = structlog.get_logger(__name__)

_SPEAKER_LINE = re.compile(r"^\s*([A-Za-z][^:\n]{0,60}?)\s*:\s+\S")
# A capitalised name of up to three words opening a new sentence mid-line,
# as in pasted text that runs several turns together on one line
_INLINE_TURN = re.compile(r"(?<=[.!?])\s+([A-Z][\w'-]*(?:[ \t][A-Z][\w'-]*){0,2}):\s+\S")


class FetchedTranscript(BaseModel):
    text: str
    title: str | None = None
    participants: list[str] = Field(default_factory=list)
    meeting_date: datetime | None = None


def parse_speakers(text: str) -> list[str]:
    """Distinct speakers from ``speaker: utterance`` turns, first-seen order.

    A turn starts a line, or follows sentence-ending punctuation on the
    same line when several turns were pasted as one paragraph.
    """
    speakers: list[str] = []
    for line in text.splitlines():
        found: list[tuple[int, str]] = []
        match = _SPEAKER_LINE.match(line)
        if match:
            found.append((match.start(1), match.group(1)))
        found.extend((m.start(1), m.group(1)) for m in _INLINE_TURN.finditer(line))
        for _, name in sorted(found):
            speaker = name.strip()
            if speaker and speaker not in speakers:
                speakers.append(speaker)
    return speakers


class TranscriptFetcher:
    """Produces transcript text for a job.

    Args:
        integrations: IntegrationRepository for credentials and status.
        fireflies: FirefliesClient for pull fetches.
    """

    def __init__(
        self, integrations: IntegrationRepository, fireflies: FirefliesClient
    ) -> None:
        self._integrations = integrations
        self._fireflies = fireflies

    async def fetch(self, job: Job) -> FetchedTranscript:
        """Resolve the job's transcript.

        Raises:
            MissingCredentialError: A pull source has no stored credential.
            TranscriptFetchError: The provider call failed, the transcript
                does not exist, or the resolved text is empty.
        """
        metadata = job.metadata
        participants = [p.name for p in metadata.participants if p.name.strip()]

        if metadata.transcript_content and metadata.transcript_content.strip():
            text = metadata.transcript_content.strip()
            return FetchedTranscript(
                text=text,
                title=metadata.title,
                participants=participants or parse_speakers(text),
                meeting_date=metadata.meeting_date,
            )

        if job.source is TranscriptSource.FIREFLIES and job.source_id:
            fetched = await self._fetch_fireflies(job.owner_id, job.source_id)
            if not fetched.text.strip():
                raise TranscriptFetchError("Transcript is empty")
            return FetchedTranscript(
                text=fetched.text,
                title=metadata.title or fetched.title,
                participants=participants or fetched.participants,
                meeting_date=metadata.meeting_date or fetched.meeting_date,
            )

        raise TranscriptFetchError("Transcript is empty")

    async def _fetch_fireflies(self, owner_id: str, transcript_id: str) -> FetchedTranscript:
        integration = await self._integrations.get_integration(
            owner_id, IntegrationProvider.FIREFLIES
        )
        api_key = (integration.credentials.get("api_key") if integration else None) or ""
        if not api_key.strip():
            await self._integrations.set_status(
                owner_id,
                IntegrationProvider.FIREFLIES,
                IntegrationStatus.ERROR,
                "Missing Fireflies API key",
            )
            raise MissingCredentialError("Fireflies integration has no API key configured")

        try:
            transcript = await self._fireflies.get_transcript(api_key, transcript_id)
        except TranscriptFetchError as exc:
            await self._integrations.set_status(
                owner_id, IntegrationProvider.FIREFLIES, IntegrationStatus.ERROR, str(exc)
            )
            raise

        await self._integrations.set_status(
            owner_id, IntegrationProvider.FIREFLIES, IntegrationStatus.ACTIVE
        )
        text, speakers = transcript.to_lines()
        logger.info(
            "transcript_pulled",
            owner_id=owner_id,
            transcript_id=transcript_id,
            chars=len(text),
        )
        return FetchedTranscript(
            text=text,
            title=transcript.title,
            participants=speakers,
            meeting_date=transcript.meeting_date,
        )
