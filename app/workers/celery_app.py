"""
Celery application: the dispatcher tick and stale-claim recovery run on beat
"""
from celery import Celery

from app.core.config import settings

STALE_CLAIM_SWEEP_SECONDS = 60.0

celery_app = Celery(
    "finished_notify",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Acked after the run, so a worker killed mid-tick leaves the message for another worker;
    # the tick lock and job claims make the rerun safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    worker_prefetch_multiplier=1,
    # Ticks are periodic; a result nobody reads only needs to outlive a debugging session
    result_expires=60 * 60,
)

# A tick that overlaps the previous one finds the Redis lock taken and returns
celery_app.conf.beat_schedule = {
    "dispatch-notifications": {
        "task": "app.workers.tasks.dispatch_notifications",
        "schedule": settings.DISPATCH_INTERVAL_SECONDS,
    },
    "release-stale-notification-claims-every-minute": {
        "task": "app.workers.tasks.release_stale_notification_claims",
        "schedule": STALE_CLAIM_SWEEP_SECONDS,
    },
}
