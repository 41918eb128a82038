"""
Notification Queue - durable notification jobs with claim/retry bookkeeping.

Job lifecycle::

    pending --claim--> in_progress --mark_success--> success
                           |
                           +--mark_failed(retryable, attempts left)--> pending (run_at += backoff)
                           +--mark_failed(otherwise)-----------------> failed
    failed --requeue (operator)--> pending

The table is the source of truth: a dispatcher that dies mid-tick leaves
in_progress rows behind, and ``release_stale_claims`` hands them back.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func

from app.core.config import settings
from app.core.exceptions import JobNotFoundError, JobStateError
from app.core.logging import get_logger
from app.db.compat import insert_ignore
from app.db.database import utcnow
from app.db.models.notification_job import NotificationJob, NotificationChannel, JobStatus

logger = get_logger(__name__)


def calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    base_seconds * 2**retry_count, capped at max_backoff_seconds.

    The exponent is bounded before shifting so a corrupted attempts counter
    cannot produce a huge integer.
    """
    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0
    retry_count = max(0, min(retry_count, max_backoff_seconds.bit_length()))
    return min(base_seconds << retry_count, max_backoff_seconds)


def build_dedupe_key(provider: str, tenant_id: str | None, event_key: str) -> str:
    return f"{provider}:{tenant_id or '-'}:{event_key}"


class NotificationQueue:
    """
    Enqueue writes through the caller's session without committing, so the
    ledger row and its job land in one transaction. State transitions used by
    the dispatcher commit immediately.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue_if_new(
        self,
        tenant_id: str | None,
        dedupe_key: str,
        payload: dict[str, Any],
        channel: NotificationChannel = NotificationChannel.PUSH,
        source_event_id: int | None = None,
        run_at: datetime | None = None,
    ) -> int | None:
        """Insert a pending job; None when a job with this dedupe key already exists"""
        job_id = await insert_ignore(
            self.db,
            NotificationJob,
            {
                "tenant_id": tenant_id,
                "source_event_id": source_event_id,
                "channel": channel,
                "dedupe_key": dedupe_key,
                "payload": payload,
                "status": JobStatus.PENDING,
                "run_at": run_at or utcnow(),
                "attempts": 0,
                "max_attempts": settings.NOTIFICATION_MAX_ATTEMPTS,
                "created_at": utcnow(),
            },
            conflict_columns=("dedupe_key",),
        )
        if job_id is None:
            logger.info("Notification job already exists", extra_data={"dedupe_key": dedupe_key})
        else:
            logger.info(
                "Notification job enqueued",
                extra_data={"job_id": job_id, "tenant_id": tenant_id, "dedupe_key": dedupe_key},
            )
        return job_id

    async def get(self, job_id: int) -> NotificationJob:
        # CAS updates bypass the identity map
        job = await self.db.get(NotificationJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_due(self, now: datetime | None = None, limit: int | None = None) -> List[NotificationJob]:
        """Pending jobs with run_at <= now, oldest first"""
        now = now or utcnow()
        result = await self.db.execute(
            select(NotificationJob)
            .where(
                NotificationJob.status == JobStatus.PENDING,
                NotificationJob.run_at <= now,
            )
            .order_by(NotificationJob.run_at, NotificationJob.id)
            .limit(limit or settings.DISPATCH_BATCH_SIZE)
        )
        return list(result.scalars().all())

    async def claim(self, job_id: int) -> bool:
        """
        Compare-and-swap pending -> in_progress.

        Only one concurrent caller sees rowcount 1; everybody else gets False
        and must leave the job alone.
        """
        result = await self.db.execute(
            update(NotificationJob)
            .where(NotificationJob.id == job_id, NotificationJob.status == JobStatus.PENDING)
            .values(status=JobStatus.IN_PROGRESS, claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        claimed = result.rowcount == 1
        if not claimed:
            logger.info("Job already claimed elsewhere", extra_data={"job_id": job_id})
        return claimed

    async def mark_success(self, job_id: int) -> None:
        job = await self.get(job_id)
        job.attempts += 1
        job.status = JobStatus.SUCCESS
        job.last_error = None
        job.completed_at = utcnow()
        await self.db.commit()

    async def mark_failed(self, job_id: int, error: str, *, retryable: bool = False) -> JobStatus:
        """
        Record a failed attempt.

        Retryable failures go back to pending with exponential backoff until
        max_attempts is reached; everything else is terminal.
        Returns the status the job ended up in.
        """
        job = await self.get(job_id)
        job.attempts += 1
        job.last_error = (error or "unknown error")[:1000]
        job.claimed_at = None

        if retryable and job.attempts < job.max_attempts:
            backoff_seconds = calculate_backoff_seconds(
                job.attempts - 1,
                base_seconds=settings.NOTIFICATION_RETRY_BASE_SECONDS,
                max_backoff_seconds=settings.NOTIFICATION_MAX_BACKOFF_SECONDS,
            )
            job.status = JobStatus.PENDING
            job.run_at = utcnow() + timedelta(seconds=backoff_seconds)
            logger.warning(
                "Notification job failed, retry scheduled",
                extra_data={
                    "job_id": job_id,
                    "attempts": job.attempts,
                    "max_attempts": job.max_attempts,
                    "backoff_seconds": backoff_seconds,
                    "error": job.last_error,
                },
            )
        else:
            job.status = JobStatus.FAILED
            job.completed_at = utcnow()
            logger.error(
                "Notification job failed",
                extra_data={
                    "job_id": job_id,
                    "attempts": job.attempts,
                    "retryable": retryable,
                    "error": job.last_error,
                },
            )

        await self.db.commit()
        return job.status

    async def requeue(self, job_id: int) -> NotificationJob:
        """Operator replay of a terminally failed job"""
        job = await self.get(job_id)
        if job.status != JobStatus.FAILED:
            raise JobStateError(job_id, job.status.value, JobStatus.FAILED.value)

        job.status = JobStatus.PENDING
        job.run_at = utcnow()
        job.completed_at = None
        job.max_attempts = max(job.max_attempts, job.attempts + 1)
        await self.db.commit()
        await self.db.refresh(job)
        logger.info("Notification job requeued", extra_data={"job_id": job_id})
        return job

    async def release_stale_claims(self, older_than: datetime) -> int:
        """Return in_progress jobs claimed before ``older_than`` to pending"""
        result = await self.db.execute(
            update(NotificationJob)
            .where(
                NotificationJob.status == JobStatus.IN_PROGRESS,
                NotificationJob.claimed_at < older_than,
            )
            .values(status=JobStatus.PENDING, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        released = result.rowcount or 0
        if released:
            logger.warning("Released stale job claims", extra_data={"count": released})
        return released

    async def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> List[NotificationJob]:
        stmt = select(NotificationJob).order_by(NotificationJob.created_at.desc(), NotificationJob.id.desc())
        if status is not None:
            stmt = stmt.where(NotificationJob.status == status)
        result = await self.db.execute(stmt.limit(limit))
        return list(result.scalars().all())

    async def summary(self) -> dict[str, int]:
        result = await self.db.execute(
            select(NotificationJob.status, func.count(NotificationJob.id)).group_by(NotificationJob.status)
        )
        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[status.value] = count
        return counts
