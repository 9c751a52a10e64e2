"""IdempotencyGuard -- one memo per provider transcript.

The imported-transcript marker keyed on (owner, source, source id) is
written right after the memo save. A later run for the same transcript
finds it and completes without re-processing. Jobs without a provider id
(manual paste) are never de-duplicated.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.dealflow.jobs.schemas import TranscriptSource

if TYPE_CHECKING:
    from src.dealflow.jobs.repository import JobRepository

logger = structlog.get_logger(__name__)


class IdempotencyGuard:
    """Checks and records imported-transcript markers.

    Args:
        repository: JobRepository holding the marker table.
    """

    def __init__(self, repository: JobRepository) -> None:
        self._repository = repository

    async def check(
        self, owner_id: str, source: TranscriptSource, source_id: str | None
    ) -> str | None:
        """Return the memo id already produced for this transcript, if any."""
        if not source_id:
            return None
        memo_id = await self._repository.get_marker(owner_id, source, source_id)
        if memo_id:
            logger.info(
                "transcript_already_imported",
                owner_id=owner_id,
                source=source.value,
                source_id=source_id,
                memo_id=memo_id,
            )
        return memo_id

    async def record(
        self,
        owner_id: str,
        source: TranscriptSource,
        source_id: str | None,
        memo_id: str,
    ) -> None:
        if not source_id:
            return
        await self._repository.upsert_marker(owner_id, source, source_id, memo_id)
