"""JobDispatcher -- hands newly created jobs to the pipeline.

With the event bus enabled a ``transcript.received`` event is published
to the Redis Stream and an EventConsumer runs the job. Without it, or
when publishing fails, the dispatcher fires a background POST to the
direct-processing endpoint and returns immediately. Either path may be
lost; the worker pool drains whatever stays pending.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import structlog

from src.dealflow.events.schemas import EventType, PipelineEvent

if TYPE_CHECKING:
    from src.dealflow.events.bus import EventBus
    from src.dealflow.jobs.schemas import Job

logger = structlog.get_logger(__name__)

DIRECT_PATH = "/api/v1/process/direct"


class JobDispatcher:
    """Publishes jobs to the event bus or triggers direct processing.

    Args:
        base_url: Base URL of this service for the direct endpoint.
        worker_secret: Shared secret sent as a Bearer token.
        bus: EventBus, or None when the bus is disabled/unreachable.
        stream: Stream name for pipeline events.
        connect_timeout: Seconds allowed to connect (and write the request).
        read_timeout: Seconds to wait for the response; None waits for the
            full pipeline run, which the direct endpoint finishes before
            answering.
    """

    def __init__(
        self,
        base_url: str,
        worker_secret: str,
        bus: EventBus | None = None,
        stream: str = "transcripts",
        connect_timeout: float = 10.0,
        read_timeout: float | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._worker_secret = worker_secret
        self._bus = bus
        self._stream = stream
        self._timeout = httpx.Timeout(connect_timeout, read=read_timeout)
        self._tasks: set[asyncio.Task] = set()

    @property
    def bus_enabled(self) -> bool:
        return self._bus is not None

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def dispatch(self, job: Job) -> str:
        """Dispatch a job; returns ``"event"`` or ``"direct"``."""
        if self._bus is not None:
            event = PipelineEvent(
                event_type=EventType.TRANSCRIPT_RECEIVED,
                job_id=job.id,
                owner_id=job.owner_id,
                source=job.source.value,
                data={"transcript_id": job.source_id} if job.source_id else {},
            )
            try:
                await self._bus.publish(self._stream, event)
                return "event"
            except Exception as exc:
                logger.warning(
                    "event_publish_failed_falling_back",
                    job_id=job.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        self.submit_direct(job.id)
        return "direct"

    def submit_direct(self, job_id: str) -> asyncio.Task:
        """Fire-and-forget POST to the direct endpoint.

        The task is retained until done so it is not garbage collected.
        """
        task = asyncio.create_task(self._fire(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fire(self, job_id: str) -> None:
        try:
            await self.post_direct(job_id)
        except Exception as exc:
            logger.warning(
                "direct_trigger_failed",
                job_id=job_id,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )

    async def post_direct(self, job_id: str) -> httpx.Response:
        """POST ``{"jobId": job_id}`` to the direct endpoint and wait for it.

        Raises:
            httpx.HTTPError: Transport failure or non-2xx status.
        """
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self._base_url}{DIRECT_PATH}",
                json={"jobId": job_id},
                headers={"Authorization": f"Bearer {self._worker_secret}"},
            )
            response.raise_for_status()
            return response

    async def drain(self) -> None:
        """Wait for in-flight background triggers (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
