"""Fireflies backfill -- queues recent transcripts a webhook never delivered.

For every owner with an active Fireflies integration the most recent
transcripts are listed. Ids that already have an imported-transcript
marker, or a job that is still pending or processing, are skipped; the
rest go through the IngestionGateway like any other ingest. A failure for
one owner or one transcript is counted and the run moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import structlog

from src.dealflow.integrations.schemas import IntegrationProvider
from src.dealflow.jobs.schemas import SourceDescriptor, TranscriptSource

if TYPE_CHECKING:
    from src.dealflow.ingestion.gateway import IngestionGateway
    from src.dealflow.integrations.fireflies import FirefliesTranscriptSummary
    from src.dealflow.integrations.repository import IntegrationRepository
    from src.dealflow.jobs.repository import JobRepository
    from src.dealflow.pipeline.idempotency import IdempotencyGuard

logger = structlog.get_logger(__name__)

DEFAULT_LOOKBACK = 20


class TranscriptLister(Protocol):
    async def list_transcripts(
        self, api_key: str, limit: int = DEFAULT_LOOKBACK
    ) -> list[FirefliesTranscriptSummary]: ...


@dataclass
class OwnerBackfill:
    owner_id: str
    queued: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "userId": self.owner_id,
            "processed": self.queued,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class BackfillReport:
    owners: list[OwnerBackfill] = field(default_factory=list)

    @property
    def queued(self) -> int:
        return sum(o.queued for o in self.owners)

    @property
    def skipped(self) -> int:
        return sum(o.skipped for o in self.owners)

    @property
    def errors(self) -> int:
        return sum(o.errors for o in self.owners)


class FirefliesBackfill:
    """Safety net for missed Fireflies webhooks.

    Args:
        integrations: Source of active Fireflies connections and their keys.
        fireflies: Client that lists an owner's recent transcripts.
        guard: IdempotencyGuard consulted for already-imported ids.
        jobs: JobRepository consulted for ids already queued.
        gateway: IngestionGateway that creates and dispatches new jobs.
        lookback: How many recent transcripts to inspect per owner.
    """

    def __init__(
        self,
        integrations: IntegrationRepository,
        fireflies: TranscriptLister,
        guard: IdempotencyGuard,
        jobs: JobRepository,
        gateway: IngestionGateway,
        lookback: int = DEFAULT_LOOKBACK,
    ) -> None:
        self._integrations = integrations
        self._fireflies = fireflies
        self._guard = guard
        self._jobs = jobs
        self._gateway = gateway
        self._lookback = lookback

    async def run(self, owner_id: str | None = None) -> BackfillReport:
        """Backfill every active owner, or only ``owner_id`` when given."""
        report = BackfillReport()
        active = await self._integrations.list_active(IntegrationProvider.FIREFLIES)

        for integration in active:
            if owner_id is not None and integration.owner_id != owner_id:
                continue
            api_key = str(integration.credentials.get("api_key") or "").strip()
            if not api_key:
                logger.info("backfill_owner_without_key", owner_id=integration.owner_id)
                continue
            report.owners.append(await self._backfill_owner(integration.owner_id, api_key))

        logger.info(
            "backfill_completed",
            owners=len(report.owners),
            queued=report.queued,
            skipped=report.skipped,
            errors=report.errors,
        )
        return report

    async def _backfill_owner(self, owner_id: str, api_key: str) -> OwnerBackfill:
        result = OwnerBackfill(owner_id=owner_id)
        try:
            recent = await self._fireflies.list_transcripts(api_key, limit=self._lookback)
        except Exception as exc:
            logger.warning(
                "backfill_listing_failed",
                owner_id=owner_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            result.errors += 1
            return result

        for transcript in recent:
            if await self._already_handled(owner_id, transcript.id):
                result.skipped += 1
                continue
            try:
                await self._gateway.ingest(
                    owner_id,
                    SourceDescriptor(
                        source=TranscriptSource.FIREFLIES,
                        transcript_id=transcript.id,
                        title=transcript.title,
                        meeting_date=transcript.meeting_date,
                    ),
                )
            except Exception as exc:
                logger.warning(
                    "backfill_ingest_failed",
                    owner_id=owner_id,
                    transcript_id=transcript.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                result.errors += 1
                continue
            result.queued += 1

        return result

    async def _already_handled(self, owner_id: str, transcript_id: str) -> bool:
        if await self._guard.check(owner_id, TranscriptSource.FIREFLIES, transcript_id):
            return True
        open_job = await self._jobs.find_open_job(
            owner_id, TranscriptSource.FIREFLIES, transcript_id
        )
        return open_job is not None
