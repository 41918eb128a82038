"""
Health checks for /health/ready: database, Redis, Celery broker and Web Push
configuration.

Liveness (/health) checks nothing; readiness reports each dependency and an
overall "healthy" or "degraded".
"""
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db import database

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Deliberately vague: readiness output is public
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"
_ERROR_PUSH = "error: push_not_configured"


async def _check_db() -> str:
    try:
        async with database.AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except (SQLAlchemyError, OSError) as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except (RedisError, OSError) as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """Workers are not pinged; a reachable broker is enough for beat to enqueue ticks"""
    client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
    try:
        await client.ping()
        return _CHECK_OK
    except (RedisError, OSError) as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY
    finally:
        await client.aclose()


def _check_push() -> str:
    return _CHECK_OK if settings.push_configured else _ERROR_PUSH


async def check_readiness() -> dict[str, Any]:
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "celery": await _check_celery(),
        "web_push": _check_push(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
