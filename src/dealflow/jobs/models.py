"""Job persistence models.

- ProcessingJobModel: one ingestion attempt with progress and lease heartbeat
- ImportedTranscriptModel: (owner, source, source_id) -> memo marker used by
  the idempotency guard

No foreign key constraints (application-level referential integrity via
repositories).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.dealflow.core.database import Base


class ProcessingJobModel(Base):
    """Durable record of one transcript ingestion attempt.

    ``heartbeat_at`` is refreshed on every progress write and is the lease
    the stale job reaper inspects.
    """

    __tablename__ = "processing_jobs"
    __table_args__ = (
        Index("ix_processing_jobs_owner_status", "owner_id", "status"),
        Index("ix_processing_jobs_status_heartbeat", "status", "heartbeat_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(300), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        server_default=text("'pending'"),
    )
    current_step: Mapped[str] = mapped_column(
        String(50),
        default="queued",
        server_default=text("'queued'"),
    )
    progress: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    metadata_data: Mapped[dict] = mapped_column(
        "metadata", JSON, default=dict, server_default=text("'{}'::json")
    )
    result_data: Mapped[dict] = mapped_column(
        "result", JSON, default=dict, server_default=text("'{}'::json")
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class ImportedTranscriptModel(Base):
    """Marker written once a transcript has produced a memo."""

    __tablename__ = "imported_transcripts"
    __table_args__ = (
        UniqueConstraint(
            "owner_id",
            "source",
            "source_id",
            name="uq_imported_transcript_owner_source",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str] = mapped_column(String(300), nullable=False)
    memo_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
