"""Pydantic v2 schemas for processing jobs and their source descriptors.

A Job is the durable record of one ingestion attempt. Its status and step
vocabularies are closed enums shared by the gateway, the pipeline runner,
the reaper, and the API layer so producers and consumers cannot drift.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class JobStatus(str, Enum):
    """Lifecycle status of a processing job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TranscriptSource(str, Enum):
    """Where a transcript came from.

    Pull sources are fetched from the provider API by transcript id when
    no content was supplied with the trigger.
    """

    MANUAL = "manual"
    UPLOAD = "upload"
    FIREFLIES = "fireflies"
    GRANOLA = "granola"

    @property
    def requires_pull(self) -> bool:
        """True when content may have to be fetched from a provider API."""
        return self is TranscriptSource.FIREFLIES

    @property
    def requires_content(self) -> bool:
        """True when the trigger itself must carry the transcript text."""
        return self in (TranscriptSource.MANUAL, TranscriptSource.UPLOAD, TranscriptSource.GRANOLA)


class ProcessingStep(str, Enum):
    """Named pipeline checkpoints persisted as ``current_step``."""

    QUEUED = "queued"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    RESOLVING_COMPANY = "resolving_company"
    GENERATING = "generating"
    SAVING = "saving"
    EXTRACTING = "extracting"
    FILING = "filing"
    COMPLETED = "completed"
    FAILED = "failed"


class Trigger(str, Enum):
    """Mechanism that started a pipeline run."""

    EVENT = "event"
    DIRECT = "direct"
    WORKER = "worker"


# ── Source Descriptor ────────────────────────────────────────────────────────


class Participant(BaseModel):
    """A meeting participant as reported by the source."""

    name: str
    email: str | None = None


class SourceDescriptor(BaseModel):
    """Validated ingestion request: what to process and where it came from."""

    source: TranscriptSource
    transcript_id: str | None = Field(
        None, description="Provider transcript id (idempotency key)"
    )
    content: str | None = Field(None, description="Raw transcript text when supplied")
    title: str | None = None
    participants: list[Participant] = Field(default_factory=list)
    meeting_date: datetime | None = None
    duration: int | None = Field(None, description="Meeting duration in seconds")
    raw_payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Original trigger payload for auditing",
    )


# ── Job Models ───────────────────────────────────────────────────────────────


class JobMetadata(BaseModel):
    """Input payload persisted with the job."""

    title: str | None = None
    transcript_content: str | None = None
    participants: list[Participant] = Field(default_factory=list)
    meeting_date: datetime | None = None
    duration: int | None = None
    external_id: str | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class JobCreate(BaseModel):
    """Data needed to insert a pending job."""

    source: TranscriptSource
    source_id: str | None = None
    metadata: JobMetadata = Field(default_factory=JobMetadata)


class Job(BaseModel):
    """A processing job with its latest progress."""

    id: str
    owner_id: str
    source: TranscriptSource
    source_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    current_step: ProcessingStep = ProcessingStep.QUEUED
    progress: int = Field(0, ge=0, le=100)
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    attempts: int = 0
    heartbeat_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
