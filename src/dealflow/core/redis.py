"""Redis connection pool used by the event bus.

A single lazily created ``redis.asyncio`` client is shared across the
process. Streams need raw access to XADD/XREADGROUP/XACK so no key
wrapper is applied here; stream keys are built by the bus.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.dealflow.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
