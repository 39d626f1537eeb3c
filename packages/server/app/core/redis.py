"""
Redis client lifecycle.

One client per process, created lazily from `CH_REDIS_URL`. `connect_redis`
is the startup check: it returns a client that answered PING, or None when
Redis is disabled or unreachable, in which case the app keeps its in-process
fanout and inline email delivery.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from app.core.config import get_settings

log = structlog.get_logger()

_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Return the shared client, creating it on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(get_settings().redis_url, decode_responses=True)
    return _client


async def connect_redis() -> redis.Redis | None:
    if not get_settings().redis_url:
        return None
    client = get_redis()
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        log.warning("redis.unavailable", error=str(exc))
        await close_redis()
        return None
    return client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
