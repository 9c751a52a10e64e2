"""Event schemas for pipeline triggers carried on Redis Streams.

Events serialize to flat string dicts for Redis Streams and deserialize
back losslessly.

Stream key pattern: dealflow:events:{stream_name}
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events on the pipeline streams."""

    TRANSCRIPT_RECEIVED = "transcript.received"


class PipelineEvent(BaseModel):
    """A request to run the transcript pipeline for one job.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        version: Schema version for forward compatibility.
        event_type: The kind of event.
        timestamp: UTC creation time.
        job_id: Job to process.
        owner_id: Owning user of the job.
        source: Transcript source value (manual, fireflies, ...).
        data: Small inline payload (e.g. the external transcript id).
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: str = "1.0"
    event_type: EventType = EventType.TRANSCRIPT_RECEIVED
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    job_id: str
    owner_id: str
    source: str
    data: dict[str, Any] = Field(default_factory=dict)

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize all fields to a flat dict of strings for XADD."""
        return {
            "event_id": self.event_id,
            "version": self.version,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "source": self.source,
            "data": json.dumps(self.data),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> PipelineEvent:
        """Deserialize from a Redis Streams flat dict.

        Reverses the encoding performed by ``to_stream_dict()``. Extra
        bookkeeping keys (``_retry_count``) are ignored.
        """
        return cls(
            event_id=raw["event_id"],
            version=raw.get("version", "1.0"),
            event_type=EventType(raw["event_type"]),
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            job_id=raw["job_id"],
            owner_id=raw["owner_id"],
            source=raw["source"],
            data=json.loads(raw["data"]) if raw.get("data") else {},
        )
