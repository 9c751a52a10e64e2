"""Event bus using Redis Streams.

Provides publish/subscribe with consumer group management, message
acknowledgment, and stream monitoring.

Stream key pattern: dealflow:events:{stream_name}
"""

from __future__ import annotations


import redis.asyncio as aioredis
import structlog

from src.dealflow.events.schemas import PipelineEvent

logger = structlog.get_logger(__name__)

STREAM_MAXLEN = 1000


class EventBus:
    """Publish and subscribe to pipeline Redis Streams.

    Consumer groups let several API processes share one stream; each
    message is delivered to one consumer and acknowledged after handling.

    Args:
        redis: Async Redis client.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    def stream_key(self, stream: str) -> str:
        """Build the full stream key, e.g. ``dealflow:events:transcripts``."""
        return f"dealflow:events:{stream}"

    async def publish(self, stream: str, event: PipelineEvent) -> str:
        """Publish an event with approximate stream trimming.

        Returns:
            Redis message ID assigned by XADD.
        """
        return await self.publish_raw(stream, event.to_stream_dict(), event.event_type.value)

    async def publish_raw(
        self, stream: str, data: dict[str, str], event_type: str | None = None
    ) -> str:
        """Append an already-serialized event (used for retries and replay)."""
        stream_key = self.stream_key(stream)
        message_id = await self._redis.xadd(
            stream_key,
            data,
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )

        logger.debug(
            "event_published",
            stream=stream_key,
            event_type=event_type or data.get("event_type"),
            event_id=data.get("event_id"),
            message_id=message_id,
        )
        return message_id

    async def subscribe(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        """Read new events as a consumer in a consumer group.

        Creates the consumer group if it does not already exist.

        Returns:
            List of ``(stream_key, [(message_id, data), ...])`` tuples.
        """
        stream_key = self.stream_key(stream)

        try:
            await self._redis.xgroup_create(
                stream_key, group, id="0", mkstream=True,
            )
        except aioredis.ResponseError:
            pass  # Group already exists

        messages = await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={stream_key: ">"},
            count=count,
            block=block,
        )
        return messages or []

    async def ack(self, stream: str, group: str, message_id: str) -> None:
        """Acknowledge a processed message."""
        await self._redis.xack(self.stream_key(stream), group, message_id)

    async def read_range(
        self, stream: str, start: str = "-", end: str = "+", count: int | None = None
    ) -> list[tuple[str, dict[str, str]]]:
        """Read stored entries between two message ids, oldest first."""
        return await self._redis.xrange(self.stream_key(stream), min=start, max=end, count=count)

    async def delete(self, stream: str, *message_ids: str) -> int:
        """Remove entries from a stream; returns how many existed."""
        return await self._redis.xdel(self.stream_key(stream), *message_ids)
