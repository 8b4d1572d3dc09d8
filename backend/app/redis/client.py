"""
Redis async client — singleton pool backing the cross-process presence mirror.

Redis is optional.  With REDIS_URL empty or the server unreachable the
service keeps working on its in-memory registry alone; get_redis() then
returns None and every mirror helper becomes a no-op.
"""

import logging

import redis.asyncio as aioredis

from app.config import settings

logger = logging.getLogger(__name__)

_pool: aioredis.ConnectionPool | None = None
_client: aioredis.Redis | None = None


async def init_redis() -> None:
    """Create the pool and probe it.  Called from the app lifespan."""
    global _pool, _client
    if not settings.REDIS_URL:
        logger.info("REDIS_URL is empty — presence mirror disabled")
        return
    try:
        _pool = aioredis.ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True, max_connections=20)
        _client = aioredis.Redis(connection_pool=_pool)
        await _client.ping()
        logger.info("Redis connected: %s", settings.REDIS_URL)
    except Exception as exc:
        logger.warning("Redis unavailable (%s) — presence mirror disabled", exc)
        _client = None


async def close_redis() -> None:
    global _pool, _client
    if _client:
        await _client.aclose()
        _client = None
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> aioredis.Redis | None:
    """Return the live Redis client, or None if unavailable."""
    return _client
