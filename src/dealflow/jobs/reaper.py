"""StaleJobReaper -- lease-based recovery of jobs abandoned mid-run.

A worker refreshes ``heartbeat_at`` every time it reports progress. A job
still marked processing whose heartbeat is older than the timeout is
assumed orphaned (process crash, deploy, OOM) and is put back to pending
so another worker can pick it up. Jobs that are merely slow keep
heartbeating between stages and are left alone.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from src.dealflow.core.monitoring import pipeline_stale_jobs_recovered_total

if TYPE_CHECKING:
    from src.dealflow.jobs.repository import JobRepository

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MINUTES = 10


class StaleJobReaper:
    """Reset processing jobs whose lease has expired.

    Args:
        repository: JobRepository for the conditional reset.
        timeout: Lease duration after the last heartbeat.
    """

    def __init__(
        self,
        repository: JobRepository,
        timeout: timedelta = timedelta(minutes=DEFAULT_TIMEOUT_MINUTES),
    ) -> None:
        self._repository = repository
        self._timeout = timeout

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    async def reap(self, now: datetime | None = None) -> int:
        """Reset every stale processing job to pending.

        Args:
            now: Reference instant (defaults to current UTC time).

        Returns:
            Number of jobs reset.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._timeout
        count = await self._repository.reset_stale_jobs(cutoff)
        if count:
            pipeline_stale_jobs_recovered_total.inc(count)
            logger.info(
                "stale_jobs_recovered",
                count=count,
                cutoff=cutoff.isoformat(),
            )
        return count
