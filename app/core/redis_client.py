"""
Redis Client: async singleton plus the dispatcher tick lock.

Uses REDIS_URL from configuration (default: redis://localhost:6379/0).
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator
from urllib.parse import urlparse

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()

DISPATCH_LOCK_KEY = "notify:dispatch:lock"

# Delete only if we still own it; the TTL may have expired and another tick taken over
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def _mask_redis_url(url: str) -> str:
    """Hide the password in REDIS_URL for logs (redis://:****@host:6379)"""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """Redis client singleton (async, connection pool)"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection; called on app shutdown"""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


@asynccontextmanager
async def dispatch_tick_lock(ttl_seconds: int | None = None) -> AsyncIterator[bool]:
    """
    Best-effort mutual exclusion between overlapping dispatcher ticks.

    Yields True when this tick owns the lock (or Redis is unreachable, in which
    case the per-job claim is the only guard) and False when another tick holds it.
    """
    ttl = ttl_seconds or settings.DISPATCH_LOCK_TTL_SECONDS
    token = uuid.uuid4().hex
    try:
        client = await get_redis()
        acquired = bool(await client.set(DISPATCH_LOCK_KEY, token, nx=True, ex=ttl))
    except (RedisError, OSError) as e:
        logger.warning(
            "Dispatch lock unavailable, continuing with per-job claims only",
            extra_data={"error": str(e)}
        )
        yield True
        return

    if not acquired:
        yield False
        return

    try:
        yield True
    finally:
        try:
            await client.eval(_RELEASE_SCRIPT, 1, DISPATCH_LOCK_KEY, token)
        except (RedisError, OSError) as e:
            logger.warning(
                "Failed to release dispatch lock; it expires on its own",
                extra_data={"error": str(e), "ttl_seconds": ttl}
            )
