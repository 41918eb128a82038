"""
Tests for the Celery workers: dispatcher tick and stale claim release
"""
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PushNotConfiguredError
from app.core.redis_client import DISPATCH_LOCK_KEY
from app.db.database import utcnow
from app.db.models.notification_job import JobStatus, NotificationJob
from app.domain.services.notification_queue import NotificationQueue
from app.workers import tasks
from app.workers.celery_app import celery_app
from tests.conftest import TEST_TENANT

PAYLOAD = {"title": "Task Completed", "body": "nightly backup", "data": {"url": "/dashboard"}}


@pytest.fixture
def task_session(db_session: AsyncSession):
    """Routes get_task_session to the test database"""
    @asynccontextmanager
    async def _session():
        yield db_session

    with patch("app.workers.tasks.get_task_session", _session):
        yield db_session


@pytest.fixture
def push_sender(fake_push_sender):
    with patch("app.workers.tasks.build_push_sender", return_value=fake_push_sender):
        yield fake_push_sender


async def _enqueue(db: AsyncSession, key: str = "task:tenant-a:nightly") -> int:
    job_id = await NotificationQueue(db).enqueue_if_new(tenant_id=TEST_TENANT, dedupe_key=key, payload=PAYLOAD)
    await db.commit()
    return job_id


class TestDispatchTask:

    @pytest.mark.unit
    async def test_delivers_due_jobs(self, task_session, push_sender, subscription_factory):
        await subscription_factory("https://push.example.com/phone")
        job_id = await _enqueue(task_session)

        result = await tasks._dispatch_once()

        assert result["processed"] == 1
        assert result["succeeded"] == 1
        assert push_sender.endpoints_sent() == ["https://push.example.com/phone"]
        assert (await NotificationQueue(task_session).get(job_id)).status == JobStatus.SUCCESS

    @pytest.mark.unit
    async def test_skipped_when_push_not_configured(self, task_session):
        job_id = await _enqueue(task_session)
        error = PushNotConfiguredError(["WEB_PUSH_PRIVATE_KEY"])

        with patch("app.workers.tasks.build_push_sender", side_effect=error):
            result = await tasks._dispatch_once()

        assert result == {"skipped": True, "reason": "push_not_configured"}
        assert (await NotificationQueue(task_session).get(job_id)).status == JobStatus.PENDING

    @pytest.mark.unit
    async def test_skipped_while_another_tick_runs(self, task_session, push_sender, fake_redis, subscription_factory):
        await subscription_factory()
        await _enqueue(task_session)
        await fake_redis.set(DISPATCH_LOCK_KEY, "other-worker")

        result = await tasks._dispatch_once()

        assert result == {"skipped": True, "reason": "tick_in_progress"}
        assert push_sender.sent == []


class TestReleaseStaleClaimsTask:

    @pytest.mark.unit
    async def test_releases_old_claims_only(self, task_session):
        stale_id = await _enqueue(task_session, "task:tenant-a:stale")
        fresh_id = await _enqueue(task_session, "task:tenant-a:fresh")
        queue = NotificationQueue(task_session)
        assert await queue.claim(stale_id)
        assert await queue.claim(fresh_id)
        await task_session.execute(
            update(NotificationJob)
            .where(NotificationJob.id == stale_id)
            .values(claimed_at=utcnow() - timedelta(minutes=10))
        )
        await task_session.commit()

        result = await tasks._release_stale_claims(timeout_seconds=300)

        assert result == {"released": 1}
        assert (await queue.get(stale_id)).status == JobStatus.PENDING
        assert (await queue.get(fresh_id)).status == JobStatus.IN_PROGRESS


class TestRunAsync:

    @pytest.mark.unit
    def test_runs_coroutine_on_fresh_loop(self):
        async def answer():
            return 42

        assert tasks.run_async(answer()) == 42


class TestBeatSchedule:

    @pytest.mark.unit
    def test_registered_tasks(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["dispatch-notifications"]["task"] == tasks.dispatch_notifications.name
        assert schedule["release-stale-notification-claims-every-minute"]["task"] == (
            tasks.release_stale_notification_claims.name
        )
        assert schedule["release-stale-notification-claims-every-minute"]["schedule"] == 60.0
