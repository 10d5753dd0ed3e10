"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a shared
connection pool; when it's None (local dev, tests) the notification
queue falls back to its in-memory implementation and no Redis server
is needed.

Redis only carries the notification task queue here.  Nothing the
enrollment/payment state machine depends on for correctness lives in
Redis; losing it loses at most some notification emails.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


async def ping_redis() -> bool:
    """True when Redis answers PING (or is not configured)."""
    if redis_pool is None:
        return True
    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
    except Exception:
        logger.exception("Redis ping failed")
        return False
    return True


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured; notifications use the in-memory queue")
        yield
        return

    if await ping_redis():
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    else:
        # Start anyway: enqueue failures are logged and swallowed, so the
        # enrollment flow keeps working without notifications.
        logger.warning("Redis unreachable on startup; notifications will be dropped")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
