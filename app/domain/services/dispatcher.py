"""
Dispatcher - delivers due notification jobs to every enabled device.

Per tick: list due jobs, claim each one, fan out to the tenant's enabled
subscriptions concurrently, disable the ones the push service reports gone,
and settle the job. A failure while handling one job never affects the others.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import MissingTenantError, PushSubscriptionGoneError, PushTransportError
from app.core.logging import get_logger, log_async_operation
from app.core.redis_client import dispatch_tick_lock
from app.db.database import utcnow
from app.db.models.notification_job import NotificationJob, JobStatus
from app.db.models.push_subscription import PushSubscription
from app.domain.services.notification_queue import NotificationQueue
from app.domain.services.push_sender import WebPushSender
from app.domain.services.subscription_registry import SubscriptionRegistry

logger = get_logger(__name__)


@dataclass
class DeliveryOutcome:
    """Fan-out result for one notification"""
    attempted: int = 0
    delivered: int = 0
    disabled_subscription_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def has_failure(self) -> bool:
        return bool(self.errors)

    @property
    def last_error(self) -> str | None:
        return self.errors[-1] if self.errors else None


@dataclass(frozen=True)
class DueJob:
    """Plain copy of a due job; a rollback expires ORM rows mid-batch"""
    id: int
    tenant_id: str | None
    dedupe_key: str
    payload: dict[str, Any]

    @classmethod
    def from_model(cls, job: NotificationJob) -> "DueJob":
        return cls(id=job.id, tenant_id=job.tenant_id, dedupe_key=job.dedupe_key, payload=job.payload)


@dataclass
class DispatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    no_subscriptions: int = 0
    disabled_subscriptions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "skipped": self.skipped,
            "noSubscriptions": self.no_subscriptions,
            "disabledSubscriptions": self.disabled_subscriptions,
        }


class Dispatcher:
    def __init__(self, db: AsyncSession, sender: WebPushSender, *, batch_size: int | None = None):
        self.db = db
        self.sender = sender
        self.batch_size = batch_size
        self.queue = NotificationQueue(db)
        self.registry = SubscriptionRegistry(db)

    async def deliver(self, subscriptions: List[PushSubscription], payload: dict[str, Any]) -> DeliveryOutcome:
        """
        Send one payload to every subscription concurrently.

        All sends finish before anything is classified; gone endpoints are
        disabled afterwards so the session is never used concurrently.
        """
        outcome = DeliveryOutcome(attempted=len(subscriptions))
        if not subscriptions:
            return outcome

        results = await asyncio.gather(
            *(self.sender.send(sub, payload) for sub in subscriptions),
            return_exceptions=True,
        )

        gone: List[PushSubscription] = []
        for sub, result in zip(subscriptions, results):
            if isinstance(result, PushSubscriptionGoneError):
                gone.append(sub)
            elif isinstance(result, PushTransportError):
                outcome.errors.append(result.message)
            elif isinstance(result, BaseException):
                logger.error(
                    "Unexpected error delivering push",
                    extra_data={"subscription_id": sub.id, "error": repr(result)},
                    exc_info=result,
                )
                outcome.errors.append(f"{type(result).__name__}: {result}")
            else:
                outcome.delivered += 1

        for sub in gone:
            if await self.registry.disable(sub.id):
                outcome.disabled_subscription_ids.append(sub.id)

        return outcome

    async def deliver_to_tenant(self, tenant_id: str, payload: dict[str, Any]) -> DeliveryOutcome:
        subscriptions = await self.registry.list_enabled(tenant_id)
        return await self.deliver(subscriptions, payload)

    async def _process_job(self, job: DueJob, result: DispatchResult) -> None:
        if not await self.queue.claim(job.id):
            result.skipped += 1
            return

        result.processed += 1
        log_data = {"job_id": job.id, "tenant_id": job.tenant_id, "dedupe_key": job.dedupe_key}

        if not job.tenant_id:
            error = MissingTenantError(job.id)
            logger.error("Notification job has no tenant", extra_data=log_data)
            await self.queue.mark_failed(job.id, error.message, retryable=False)
            result.failed += 1
            return

        subscriptions = await self.registry.list_enabled(job.tenant_id)
        if not subscriptions:
            logger.info("No enabled subscriptions for tenant, nothing to deliver", extra_data=log_data)
            result.no_subscriptions += 1

        outcome = await self.deliver(subscriptions, job.payload)
        result.disabled_subscriptions += len(outcome.disabled_subscription_ids)

        if outcome.has_failure:
            status = await self.queue.mark_failed(job.id, outcome.last_error, retryable=True)
            if status == JobStatus.PENDING:
                result.retried += 1
            else:
                result.failed += 1
            return

        await self.queue.mark_success(job.id)
        result.succeeded += 1
        logger.info(
            "Notification job delivered",
            extra_data={
                **log_data,
                "attempted": outcome.attempted,
                "delivered": outcome.delivered,
                "disabled": len(outcome.disabled_subscription_ids),
            },
        )

    @log_async_operation("dispatch_notifications")
    async def run(self, now: datetime | None = None) -> DispatchResult:
        result = DispatchResult()
        jobs = [
            DueJob.from_model(job)
            for job in await self.queue.list_due(now or utcnow(), self.batch_size)
        ]

        for job in jobs:
            try:
                await self._process_job(job, result)
            except Exception as e:
                logger.error(
                    "Error processing notification job",
                    extra_data={"job_id": job.id, "error": str(e)},
                    exc_info=True,
                )
                await self.db.rollback()
                await self._record_unexpected_failure(job.id, e, result)

        return result

    async def _record_unexpected_failure(self, job_id: int, error: Exception, result: DispatchResult) -> None:
        try:
            status = await self.queue.mark_failed(job_id, f"{type(error).__name__}: {error}", retryable=True)
        except Exception as e:
            # The stale-claim sweep returns the job to pending later
            await self.db.rollback()
            logger.error(
                "Could not record job failure",
                extra_data={"job_id": job_id, "error": str(e)},
                exc_info=True,
            )
            result.failed += 1
            return
        if status == JobStatus.PENDING:
            result.retried += 1
        else:
            result.failed += 1


async def run_dispatch_tick(
    db: AsyncSession,
    sender: WebPushSender,
    *,
    now: datetime | None = None,
) -> DispatchResult | None:
    """One dispatcher pass under the Redis tick lock; None when another tick holds it"""
    async with dispatch_tick_lock() as acquired:
        if not acquired:
            logger.info("Dispatch tick skipped, another tick is running")
            return None
        return await Dispatcher(db, sender).run(now)
