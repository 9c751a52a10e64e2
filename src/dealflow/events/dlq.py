"""Dead letter storage for pipeline deliveries that exhausted their retries.

A dead-lettered delivery keeps its original fields and gains ``_dlq_*``
metadata. It lives in ``{stream}:dlq`` (so ``dealflow:events:transcripts:dlq``
for the default stream) until an operator replays or discards it.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.dealflow.events.bus import EventBus

logger = structlog.get_logger(__name__)

DLQ_SUFFIX = ":dlq"
DLQ_FIELD_PREFIX = "_dlq_"

# Fields the consumer adds that must not survive a replay
_DELIVERY_FIELDS = ("_retry_count",)


def dlq_stream(stream: str) -> str:
    return f"{stream}{DLQ_SUFFIX}"


def strip_delivery_metadata(data: dict[str, str]) -> dict[str, str]:
    """Original event fields only, ready to be published as a fresh delivery."""
    return {
        key: value
        for key, value in data.items()
        if not key.startswith(DLQ_FIELD_PREFIX) and key not in _DELIVERY_FIELDS
    }


class DeadLetterQueue:
    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    async def send_to_dlq(
        self,
        original_stream: str,
        message_id: str,
        data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> str:
        """Store a failed delivery with its failure metadata; returns the DLQ id."""
        metadata = {
            "original_stream": original_stream,
            "original_id": message_id,
            "error": error,
            "retry_count": str(retry_count),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        entry = {**data, **{DLQ_FIELD_PREFIX + k: v for k, v in metadata.items()}}
        dlq_id = await self._bus.publish_raw(dlq_stream(original_stream), entry)

        logger.warning(
            "event_dead_lettered",
            original_stream=original_stream,
            original_id=message_id,
            job_id=data.get("job_id"),
            retry_count=retry_count,
            error=error,
        )
        return dlq_id

    async def list_dlq_messages(
        self, original_stream: str, count: int = 50
    ) -> list[tuple[str, dict[str, str]]]:
        """Oldest dead-lettered deliveries first."""
        return await self._bus.read_range(dlq_stream(original_stream), count=count)

    async def replay_message(self, original_stream: str, dlq_message_id: str) -> str:
        """Publish a dead-lettered delivery again with a fresh retry budget.

        The DLQ entry is removed only after the re-publish succeeds.

        Raises:
            ValueError: If no entry with ``dlq_message_id`` exists.
        """
        stream = dlq_stream(original_stream)
        found = await self._bus.read_range(
            stream, start=dlq_message_id, end=dlq_message_id, count=1
        )
        if not found:
            raise ValueError(
                f"DLQ message '{dlq_message_id}' not found in {self._bus.stream_key(stream)}"
            )

        _, data = found[0]
        new_id = await self._bus.publish_raw(original_stream, strip_delivery_metadata(data))
        await self._bus.delete(stream, dlq_message_id)

        logger.info(
            "event_replayed",
            original_stream=original_stream,
            dlq_message_id=dlq_message_id,
            new_message_id=new_id,
        )
        return new_id
