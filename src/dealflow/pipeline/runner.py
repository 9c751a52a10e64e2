"""TranscriptPipeline -- the single runner for every trigger.

Event consumers, the direct endpoint, and the worker pool all call
``TranscriptPipeline.run(job_id, trigger)``; the trigger only labels logs
and metrics. Stage order and checkpoints:

    claim -> idempotency guard
    fetch (10) -> classify (25) -> company (40) -> generate (60)
    save memo + marker (75) -> contacts, commitments, tasks, reminders (85)
    file to Drive (95) -> complete (100)

Critical stages (fetch, memo save, marker) fail the job with the error
message. Everything after the save is enrichment: failures are logged
and the run still completes, so a completed job guarantees a memo but
not any company, contact, task, reminder, or document.
"""

from __future__ import annotations

from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import BaseModel

from src.dealflow.config import ContentMode
from src.dealflow.core.monitoring import (
    pipeline_jobs_in_flight,
    pipeline_jobs_total,
    track_stage,
)
from src.dealflow.crm.schemas import MemoCreate
from src.dealflow.jobs.progress import ProgressReporter
from src.dealflow.jobs.schemas import Job, ProcessingStep, Trigger
from src.dealflow.pipeline.companies import CompanyResolution
from src.dealflow.pipeline.templates import get_template

if TYPE_CHECKING:
    from src.dealflow.crm.repository import CRMRepository
    from src.dealflow.crm.schemas import Memo
    from src.dealflow.jobs.repository import JobRepository
    from src.dealflow.pipeline.classification import ClassificationResult, MeetingClassifier
    from src.dealflow.pipeline.companies import CompanyResolver
    from src.dealflow.pipeline.content import ContentGenerator, GeneratedContent
    from src.dealflow.pipeline.extraction import ContactRecorder, MeetingExtractor
    from src.dealflow.pipeline.fetcher import FetchedTranscript, TranscriptFetcher
    from src.dealflow.pipeline.filer import DocumentFiler
    from src.dealflow.pipeline.idempotency import IdempotencyGuard
    from src.dealflow.pipeline.materializer import Materializer
    from src.dealflow.pipeline.templates import MemoTemplate

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ALREADY_PROCESSED = "Job already processed"


class PipelineOutcome(BaseModel):
    success: bool
    memo_id: str | None = None
    skipped: bool = False
    error: str | None = None


class TranscriptPipeline:
    """Executes the transcript -> memo stage sequence for one job at a time.

    All collaborators are injected so tests can substitute doubles.
    """

    def __init__(
        self,
        jobs: JobRepository,
        crm: CRMRepository,
        guard: IdempotencyGuard,
        fetcher: TranscriptFetcher,
        classifier: MeetingClassifier,
        companies: CompanyResolver,
        content: ContentGenerator,
        extractor: MeetingExtractor,
        recorder: ContactRecorder,
        materializer: Materializer,
        filer: DocumentFiler,
        content_mode: ContentMode = ContentMode.sectioned,
    ) -> None:
        self._jobs = jobs
        self._crm = crm
        self._guard = guard
        self._fetcher = fetcher
        self._classifier = classifier
        self._companies = companies
        self._content = content
        self._extractor = extractor
        self._recorder = recorder
        self._materializer = materializer
        self._filer = filer
        self._content_mode = content_mode

    async def run(self, job_id: str, trigger: Trigger = Trigger.DIRECT) -> PipelineOutcome:
        """Claim and execute a job.

        Returns:
            PipelineOutcome; ``error == "Job already processed"`` when the
            job was not pending (claimed elsewhere or finished).
        """
        job = await self._jobs.claim_job(job_id)
        if job is None:
            logger.info("job_not_claimable", job_id=job_id, trigger=trigger.value)
            return PipelineOutcome(success=False, error=ALREADY_PROCESSED)

        pipeline_jobs_in_flight.inc()
        try:
            outcome = await self._execute(job, trigger)
        finally:
            pipeline_jobs_in_flight.dec()

        if outcome.skipped:
            status = "skipped"
        else:
            status = "completed" if outcome.success else "failed"
        pipeline_jobs_total.labels(status=status, trigger=trigger.value).inc()
        return outcome

    async def _execute(self, job: Job, trigger: Trigger) -> PipelineOutcome:
        log = logger.bind(job_id=job.id, owner_id=job.owner_id, trigger=trigger.value)
        reporter = ProgressReporter(self._jobs, job.id)
        log.info("job_started", source=job.source.value, attempt=job.attempts)

        # ── Critical path ────────────────────────────────────────────────
        try:
            existing_memo_id = await self._guard.check(job.owner_id, job.source, job.source_id)
            if existing_memo_id:
                await reporter.complete({"memo_id": existing_memo_id, "skipped": True})
                log.info("job_skipped_duplicate", memo_id=existing_memo_id)
                return PipelineOutcome(success=True, memo_id=existing_memo_id, skipped=True)

            await reporter.advance(ProcessingStep.FETCHING)
            with track_stage("fetch"):
                transcript = await self._fetcher.fetch(job)

            await reporter.advance(ProcessingStep.CLASSIFYING)
            with track_stage("classify"):
                classification = await self._classifier.classify(transcript.text)
            template = get_template(classification.category)

            await reporter.advance(ProcessingStep.RESOLVING_COMPANY)
            company = await self._best_effort(
                "company", self._resolve_company(job.owner_id, transcript.text), CompanyResolution()
            )

            await reporter.advance(ProcessingStep.GENERATING)
            with track_stage("generate"):
                generated = await self._content.generate(
                    transcript.text, template, self._content_mode
                )

            await reporter.advance(ProcessingStep.SAVING)
            with track_stage("save"):
                memo = await self._save_memo(
                    job, transcript, template, classification, company, generated
                )
                await self._guard.record(job.owner_id, job.source, job.source_id, memo.id)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            log.warning(
                "job_failed",
                step=reporter.step.value,
                progress=reporter.progress,
                error=message,
                error_type=type(exc).__name__,
            )
            try:
                await reporter.fail(message)
            except Exception:
                log.error("job_fail_write_failed", exc_info=True)
            return PipelineOutcome(success=False, error=message)

        # ── Enrichment ───────────────────────────────────────────────────
        await reporter.advance(ProcessingStep.EXTRACTING)
        enrichment = await self._enrich(job, transcript, memo, company)

        await reporter.advance(ProcessingStep.FILING)
        filing = await self._filer.file(
            job.owner_id, memo, company.company_name, template.id.value
        )

        result: dict[str, Any] = {
            "memo_id": memo.id,
            "company_id": company.company_id,
            "company_name": company.company_name,
            "is_new_company": company.is_new,
            "template_used": template.id.value,
            "classification_method": classification.method.value,
            **enrichment,
            "drive_filed": filing.filed,
            "drive_url": filing.url,
            "skipped": False,
        }

        try:
            await reporter.complete(result)
        except Exception as exc:
            log.error("job_complete_write_failed", memo_id=memo.id, exc_info=True)
            return PipelineOutcome(success=False, memo_id=memo.id, error=str(exc))

        log.info(
            "job_completed",
            memo_id=memo.id,
            template=template.id.value,
            contacts=enrichment["contacts_created"],
            tasks=enrichment["tasks_created"],
            reminders=enrichment["reminders_created"],
            drive_filed=filing.filed,
        )
        return PipelineOutcome(success=True, memo_id=memo.id)

    # ── Stages ───────────────────────────────────────────────────────────

    async def _resolve_company(self, owner_id: str, text: str) -> CompanyResolution:
        known = await self._crm.list_companies(owner_id)
        return await self._companies.resolve(owner_id, text, known)

    async def _save_memo(
        self,
        job: Job,
        transcript: FetchedTranscript,
        template: MemoTemplate,
        classification: ClassificationResult,
        company: CompanyResolution,
        generated: GeneratedContent,
    ) -> Memo:
        """Create the memo, or overwrite the one a racing run already saved."""
        meeting_date = transcript.meeting_date
        title = transcript.title or job.metadata.title
        if not title:
            when = (meeting_date or datetime.now(timezone.utc)).strftime("%b %d, %Y")
            title = f"{template.name} - {when}"

        data = MemoCreate(
            source=job.source.value,
            source_id=job.source_id,
            title=title,
            content=generated.content,
            summary=generated.summary,
            company_id=company.company_id,
            meeting_date=meeting_date,
            participants=transcript.participants,
            template_id=template.id.value,
            metadata={
                "job_id": job.id,
                "classification_method": classification.method.value,
                "sections": generated.sections,
                "duration": job.metadata.duration,
            },
        )

        existing = (
            await self._crm.find_memo_by_source(job.owner_id, job.source.value, job.source_id)
            if job.source_id
            else None
        )
        if existing is not None:
            memo = await self._crm.update_memo(job.owner_id, existing.id, data)
            logger.info("memo_overwritten", job_id=job.id, memo_id=memo.id)
            return memo

        memo = await self._crm.create_memo(job.owner_id, data)
        logger.info("memo_saved", job_id=job.id, memo_id=memo.id)
        return memo

    async def _enrich(
        self,
        job: Job,
        transcript: FetchedTranscript,
        memo: Memo,
        company: CompanyResolution,
    ) -> dict[str, int]:
        owner_name = job.metadata.raw_payload.get("owner_name")

        extracted = await self._best_effort(
            "extract_contacts", self._extractor.extract_contacts(transcript.text, owner_name), []
        )
        contact_map, contacts_created = await self._best_effort(
            "record_contacts",
            self._recorder.record(job.owner_id, extracted, memo, transcript.meeting_date),
            ({}, 0),
        )
        commitments = await self._best_effort(
            "extract_commitments", self._extractor.extract_commitments(transcript.text), []
        )

        items = await self._best_effort(
            "action_items", self._materializer.extract_action_items(memo.content), []
        )
        tasks = await self._best_effort(
            "tasks",
            self._materializer.create_tasks(job.owner_id, memo.id, company.company_id, items),
            [],
        )
        reminders = await self._best_effort(
            "reminders",
            self._materializer.create_reminders(
                job.owner_id, memo.id, company.company_id, commitments, contact_map
            ),
            [],
        )

        return {
            "contacts_created": contacts_created,
            "contacts_linked": len(contact_map),
            "tasks_created": len(tasks),
            "reminders_created": len(reminders),
        }

    async def _best_effort(self, stage: str, awaitable: Awaitable[T], default: T) -> T:
        """Await an enrichment stage; any failure yields ``default``."""
        try:
            with track_stage(stage):
                return await awaitable
        except Exception as exc:
            logger.warning(
                "pipeline_stage_degraded",
                stage=stage,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return default
