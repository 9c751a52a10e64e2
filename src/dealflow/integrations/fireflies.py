"""Async client for the Fireflies.ai GraphQL API.

Provides FirefliesClient (single transcript fetch and the recent-transcripts
listing used by backfill) with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s) on connection errors, timeouts, and HTTP status errors.
After retries are exhausted the failure is re-raised as
TranscriptFetchError with the provider's status code so it can be stored
on the job and on the integration.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import structlog
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

TRANSCRIPT_QUERY = """
query Transcript($id: String!) {
  transcript(id: $id) {
    title
    date
    sentences { text speaker_name }
  }
}
"""

RECENT_TRANSCRIPTS_QUERY = """
query RecentTranscripts($limit: Int) {
  transcripts(limit: $limit) {
    id
    title
    date
  }
}
"""

_fireflies_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class TranscriptFetchError(Exception):
    """A transcript could not be resolved; fails the job."""


class MissingCredentialError(TranscriptFetchError):
    """The owner has no usable credential for the provider."""


class FirefliesSentence(BaseModel):
    text: str = ""
    speaker_name: str | None = None


class FirefliesTranscript(BaseModel):
    """Subset of the Fireflies transcript object used by the pipeline."""

    title: str | None = None
    date: float | None = Field(None, description="Epoch milliseconds")
    sentences: list[FirefliesSentence] = Field(default_factory=list)

    @property
    def meeting_date(self) -> datetime | None:
        if self.date is None:
            return None
        return datetime.fromtimestamp(self.date / 1000, tz=timezone.utc)

    def to_lines(self) -> tuple[str, list[str]]:
        """Assemble ``speaker: text`` lines and the distinct speaker list.

        Returns:
            Tuple of (transcript text, speakers in first-seen order).
        """
        lines: list[str] = []
        speakers: list[str] = []
        for sentence in self.sentences:
            text = sentence.text.strip()
            if not text:
                continue
            speaker = (sentence.speaker_name or "Unknown").strip() or "Unknown"
            if speaker not in speakers:
                speakers.append(speaker)
            lines.append(f"{speaker}: {text}")
        return "\n".join(lines), speakers


class FirefliesTranscriptSummary(BaseModel):
    """One row of the recent-transcripts listing."""

    id: str
    title: str | None = None
    date: float | None = Field(None, description="Epoch milliseconds")

    @property
    def meeting_date(self) -> datetime | None:
        if self.date is None:
            return None
        return datetime.fromtimestamp(self.date / 1000, tz=timezone.utc)


class FirefliesClient:
    """Async client for Fireflies transcript retrieval.

    Args:
        api_url: GraphQL endpoint.
        timeout: Request timeout in seconds.
    """

    TIMEOUT_READ = 30.0

    def __init__(
        self,
        api_url: str = "https://api.fireflies.ai/graphql",
        timeout: float = TIMEOUT_READ,
    ) -> None:
        self._api_url = api_url
        self._timeout = timeout

    def _client(self, api_key: str) -> httpx.AsyncClient:
        """Create a new httpx client authorised for one user's key."""
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )

    @_fireflies_retry
    async def _query(self, api_key: str, query: str, variables: dict) -> dict:
        async with self._client(api_key) as client:
            response = await client.post(
                self._api_url,
                json={"query": query, "variables": variables},
            )
            response.raise_for_status()
            return response.json()

    async def get_transcript(self, api_key: str, transcript_id: str) -> FirefliesTranscript:
        """Fetch one transcript by id.

        Args:
            api_key: The owner's Fireflies API key.
            transcript_id: Fireflies transcript (meeting) id.

        Returns:
            Parsed FirefliesTranscript.

        Raises:
            TranscriptFetchError: On non-2xx responses, transport failures
                after retries, or when the transcript does not exist.
        """
        try:
            payload = await self._query(api_key, TRANSCRIPT_QUERY, {"id": transcript_id})
        except httpx.HTTPStatusError as exc:
            raise TranscriptFetchError(
                f"Fireflies API error: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptFetchError(f"Fireflies API error: {type(exc).__name__}") from exc

        transcript = ((payload or {}).get("data") or {}).get("transcript")
        if not transcript:
            raise TranscriptFetchError("Fireflies transcript not found")

        parsed = FirefliesTranscript.model_validate(transcript)
        logger.info(
            "fireflies.transcript_fetched",
            transcript_id=transcript_id,
            sentences=len(parsed.sentences),
        )
        return parsed

    async def list_transcripts(
        self, api_key: str, limit: int = 20
    ) -> list[FirefliesTranscriptSummary]:
        """List the owner's most recent transcripts, newest first.

        Raises:
            TranscriptFetchError: On non-2xx responses, transport failures
                after retries, or GraphQL errors in the response body.
        """
        try:
            payload = await self._query(api_key, RECENT_TRANSCRIPTS_QUERY, {"limit": limit})
        except httpx.HTTPStatusError as exc:
            raise TranscriptFetchError(
                f"Fireflies API error: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptFetchError(f"Fireflies API error: {type(exc).__name__}") from exc

        payload = payload or {}
        if payload.get("errors"):
            raise TranscriptFetchError("Fireflies API error: graphql")

        rows = (payload.get("data") or {}).get("transcripts") or []
        return [FirefliesTranscriptSummary.model_validate(row) for row in rows]
