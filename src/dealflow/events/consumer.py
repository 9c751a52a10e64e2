"""EventConsumer -- runs pipeline jobs delivered over a Redis Stream.

Each delivery is decoded into a PipelineEvent and handed to the handler
(the lifespan passes one that calls ``TranscriptPipeline.run``). The
pipeline records its own job failures, so the handler only raises for
infrastructure problems; those deliveries are re-published with a
``_retry_count`` after 1s/4s/16s and dead-lettered on the fourth failure.
The original delivery is acknowledged in every outcome, which keeps the
pending entry list empty. Jobs whose delivery is lost stay pending in the
database and are picked up by the worker pool.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.dealflow.core.monitoring import pipeline_events_total
from src.dealflow.events.bus import EventBus
from src.dealflow.events.dlq import DeadLetterQueue
from src.dealflow.events.schemas import PipelineEvent

logger = structlog.get_logger(__name__)

RETRY_COUNT_KEY = "_retry_count"

EventHandler = Callable[[PipelineEvent], Awaitable[None]]


class EventConsumer:
    """One member of the pipeline consumer group.

    Args:
        bus: EventBus the stream is read from.
        stream: Stream name (``transcripts`` by default in settings).
        group: Consumer group shared by every API process.
        consumer_name: Unique name of this process within the group.
        dlq: DeadLetterQueue for deliveries that exhausted their retries.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[int] = [1, 4, 16]
    READ_ERROR_BACKOFF: float = 1.0

    def __init__(
        self,
        bus: EventBus,
        stream: str,
        group: str,
        consumer_name: str,
        dlq: DeadLetterQueue,
    ) -> None:
        self._bus = bus
        self._stream = stream
        self._group = group
        self._consumer_name = consumer_name
        self._dlq = dlq
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Let the loop exit once the current read returns."""
        self._running = False

    async def process_loop(self, handler: EventHandler) -> None:
        """Read and handle deliveries until ``stop()`` is called.

        Read errors (Redis restarting, network blips) are logged and the
        loop backs off briefly instead of exiting.
        """
        self._running = True
        logger.info(
            "consumer_started",
            stream=self._stream,
            group=self._group,
            consumer=self._consumer_name,
        )

        while self._running:
            try:
                batches = await self._bus.subscribe(
                    self._stream, self._group, self._consumer_name
                )
            except Exception as exc:
                logger.warning(
                    "consumer_read_failed",
                    stream=self._stream,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                await asyncio.sleep(self.READ_ERROR_BACKOFF)
                continue

            for _stream_key, deliveries in batches:
                for message_id, raw_data in deliveries:
                    await self.process_message(message_id, raw_data, handler)

        logger.info("consumer_stopped", stream=self._stream, consumer=self._consumer_name)

    async def process_message(
        self,
        message_id: str,
        raw_data: dict[str, str],
        handler: EventHandler,
    ) -> None:
        """Handle one delivery, then retry or dead-letter it on failure."""
        attempts = int(raw_data.get(RETRY_COUNT_KEY, "0"))

        try:
            event = PipelineEvent.from_stream_dict(raw_data)
            await handler(event)
        except Exception as exc:
            if attempts >= self.MAX_RETRIES:
                await self._dead_letter(message_id, raw_data, attempts, exc)
            else:
                await self._retry(message_id, raw_data, attempts, exc)
        else:
            pipeline_events_total.labels(outcome="handled").inc()
            logger.debug(
                "event_handled",
                event_id=event.event_id,
                job_id=event.job_id,
                message_id=message_id,
            )

        await self._bus.ack(self._stream, self._group, message_id)

    def _backoff(self, attempts: int) -> int:
        return self.RETRY_DELAYS[min(attempts, len(self.RETRY_DELAYS) - 1)]

    async def _retry(
        self, message_id: str, raw_data: dict[str, str], attempts: int, exc: Exception
    ) -> None:
        delay = self._backoff(attempts)
        logger.warning(
            "event_handling_failed",
            message_id=message_id,
            job_id=raw_data.get("job_id"),
            retry_count=attempts,
            retry_in=delay,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await asyncio.sleep(delay)
        await self._bus.publish_raw(
            self._stream, {**raw_data, RETRY_COUNT_KEY: str(attempts + 1)}
        )
        pipeline_events_total.labels(outcome="retried").inc()

    async def _dead_letter(
        self, message_id: str, raw_data: dict[str, str], attempts: int, exc: Exception
    ) -> None:
        await self._dlq.send_to_dlq(
            original_stream=self._stream,
            message_id=message_id,
            data=raw_data,
            error=str(exc),
            retry_count=attempts,
        )
        pipeline_events_total.labels(outcome="dead_lettered").inc()
        logger.error(
            "event_retries_exhausted",
            message_id=message_id,
            job_id=raw_data.get("job_id"),
            retry_count=attempts,
            error=str(exc),
        )
