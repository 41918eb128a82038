"""
Celery Tasks for notification delivery

The dispatcher runs on a beat schedule as an alternative to the external
scheduler calling POST /api/push/dispatch; both paths share the Redis tick
lock, so they never deliver the same batch twice.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import timedelta

from app.workers.celery_app import celery_app
from app.core.config import settings
from app.core.exceptions import PushNotConfiguredError
from app.core.logging import get_logger, set_correlation_id
from app.db.database import get_task_session, utcnow
from app.domain.services.dispatcher import run_dispatch_tick
from app.domain.services.notification_queue import NotificationQueue
from app.domain.services.push_sender import build_push_sender

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Fresh event loop per task, closed with everything bound to it.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis singleton is bound to this loop; the next task gets a new one
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _dispatch_once() -> dict:
    try:
        sender = build_push_sender()
    except PushNotConfiguredError as e:
        logger.warning("Dispatch skipped: Web Push is not configured", extra_data=e.details)
        return {"skipped": True, "reason": "push_not_configured"}

    async with get_task_session() as db:
        result = await run_dispatch_tick(db, sender)

    if result is None:
        return {"skipped": True, "reason": "tick_in_progress"}
    return result.to_dict()


async def _release_stale_claims(timeout_seconds: int) -> dict:
    cutoff = utcnow() - timedelta(seconds=timeout_seconds)
    async with get_task_session() as db:
        released = await NotificationQueue(db).release_stale_claims(cutoff)
    return {"released": released}


@celery_app.task(name="app.workers.tasks.dispatch_notifications")
def dispatch_notifications():
    """One dispatcher tick: deliver every due notification job"""
    return run_async(_dispatch_once())


@celery_app.task(name="app.workers.tasks.release_stale_notification_claims")
def release_stale_notification_claims(timeout_seconds: int | None = None):
    """
    Hand jobs stuck in in_progress back to the queue.

    A dispatcher killed between claim and settle leaves its jobs claimed;
    after JOB_CLAIM_TIMEOUT_SECONDS they become due again.
    """
    return run_async(_release_stale_claims(timeout_seconds or settings.JOB_CLAIM_TIMEOUT_SECONDS))
