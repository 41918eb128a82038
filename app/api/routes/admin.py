"""
Operator endpoints - notification job inspection and replay.

All endpoints require the X-Admin-API-Key header.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.schemas import (
    CircuitBreakerStatusResponse,
    NotificationJobListResponse,
    NotificationJobResponse,
)
from app.core.circuit_breaker import CircuitBreaker
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.notification_job import JobStatus, NotificationJob
from app.domain.services.notification_queue import NotificationQueue

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


def _to_response(job: NotificationJob) -> NotificationJobResponse:
    return NotificationJobResponse(
        id=job.id,
        tenantId=job.tenant_id,
        sourceEventId=job.source_event_id,
        channel=job.channel.value,
        dedupeKey=job.dedupe_key,
        status=job.status.value,
        attempts=job.attempts,
        maxAttempts=job.max_attempts,
        lastError=job.last_error,
        runAt=job.run_at,
        createdAt=job.created_at,
        completedAt=job.completed_at,
    )


@router.get("/jobs", response_model=NotificationJobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> NotificationJobListResponse:
    jobs = await NotificationQueue(db).list_jobs(status, limit)
    return NotificationJobListResponse(jobs=[_to_response(job) for job in jobs], count=len(jobs))


@router.get("/jobs/summary")
async def jobs_summary(db: AsyncSession = Depends(get_db)) -> dict:
    return await NotificationQueue(db).summary()


@router.get("/jobs/{job_id}", response_model=NotificationJobResponse)
async def get_job(job_id: int, db: AsyncSession = Depends(get_db)) -> NotificationJobResponse:
    return _to_response(await NotificationQueue(db).get(job_id))


@router.post("/jobs/{job_id}/retry", response_model=NotificationJobResponse)
async def retry_job(job_id: int, db: AsyncSession = Depends(get_db)) -> NotificationJobResponse:
    """Put a failed job back in the queue; 409 for any other status"""
    job = await NotificationQueue(db).requeue(job_id)
    logger.info("Job requeued by operator", extra_data={"job_id": job_id})
    return _to_response(job)


@router.get("/circuit-breakers", response_model=List[CircuitBreakerStatusResponse])
async def circuit_breakers() -> List[CircuitBreakerStatusResponse]:
    """One breaker per push service host that has been contacted by this process"""
    snapshots = (breaker.snapshot() for breaker in CircuitBreaker.all_instances())
    return [
        CircuitBreakerStatusResponse(
            service=s.service,
            state=s.state.value,
            failure_count=s.failure_count,
            success_count=s.success_count,
            half_open_calls=s.half_open_calls,
            retry_after_seconds=round(s.retry_after_seconds, 1),
        )
        for s in snapshots
    ]
