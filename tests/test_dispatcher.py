"""
Tests for the dispatcher: fan-out, gone endpoints, retries, per-job isolation
"""
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.models.notification_job import JobStatus, NotificationJob
from app.db.models.push_subscription import PushSubscription
from app.domain.services.dispatcher import Dispatcher, run_dispatch_tick
from app.domain.services.notification_queue import NotificationQueue
from app.domain.services.push_sender import VapidCredentials, WebPushSender
from app.core.redis_client import DISPATCH_LOCK_KEY
from tests.conftest import TEST_TENANT

PAYLOAD = {"title": "Task Completed", "body": "deploy", "data": {"url": "/dashboard"}}

A = "https://push.example.com/a"
B = "https://push.example.com/b"
C = "https://push.example.com/c"


async def _enqueue(db: AsyncSession, key: str = "task:tenant-a:1", tenant_id: str | None = TEST_TENANT) -> int:
    job_id = await NotificationQueue(db).enqueue_if_new(tenant_id=tenant_id, dedupe_key=key, payload=PAYLOAD)
    await db.commit()
    return job_id


async def _job(db: AsyncSession, job_id: int) -> NotificationJob:
    return await NotificationQueue(db).get(job_id)


async def _enabled_endpoints(db: AsyncSession) -> set[str]:
    result = await db.execute(
        select(PushSubscription.endpoint).where(PushSubscription.enabled.is_(True))
    )
    return set(result.scalars().all())


class TestDeliver:

    @pytest.mark.unit
    async def test_gone_endpoint_is_disabled_others_delivered(
        self, db_session: AsyncSession, subscription_factory, fake_push_sender
    ):
        for endpoint in (A, B, C):
            await subscription_factory(endpoint)
        fake_push_sender.fail(B, 410)
        job_id = await _enqueue(db_session)

        result = await Dispatcher(db_session, fake_push_sender).run()

        assert sorted(fake_push_sender.endpoints_sent()) == [A, C]
        assert await _enabled_endpoints(db_session) == {A, C}
        assert (await _job(db_session, job_id)).status == JobStatus.SUCCESS
        assert result.succeeded == 1
        assert result.disabled_subscriptions == 1

    @pytest.mark.unit
    async def test_all_endpoints_gone_is_still_success(
        self, db_session: AsyncSession, subscription_factory, fake_push_sender
    ):
        await subscription_factory(A)
        fake_push_sender.fail(A, 404)
        job_id = await _enqueue(db_session)

        result = await Dispatcher(db_session, fake_push_sender).run()

        assert (await _job(db_session, job_id)).status == JobStatus.SUCCESS
        assert result.disabled_subscriptions == 1
        assert await _enabled_endpoints(db_session) == set()

    @pytest.mark.unit
    async def test_no_subscriptions_counts_as_success(self, db_session: AsyncSession, fake_push_sender):
        job_id = await _enqueue(db_session)

        result = await Dispatcher(db_session, fake_push_sender).run()

        assert (await _job(db_session, job_id)).status == JobStatus.SUCCESS
        assert result.no_subscriptions == 1
        assert fake_push_sender.sent == []

    @pytest.mark.unit
    async def test_payload_is_sent_unchanged(self, db_session: AsyncSession, subscription_factory, fake_push_sender):
        await subscription_factory(A)
        await _enqueue(db_session)

        await Dispatcher(db_session, fake_push_sender).run()

        assert fake_push_sender.sent == [(A, PAYLOAD)]


class TestFailures:

    @pytest.mark.unit
    async def test_transport_error_schedules_retry(
        self, db_session: AsyncSession, subscription_factory, fake_push_sender
    ):
        await subscription_factory(A)
        await subscription_factory(B)
        fake_push_sender.fail(A, 500)
        job_id = await _enqueue(db_session)

        result = await Dispatcher(db_session, fake_push_sender).run()

        job = await _job(db_session, job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert "500" in job.last_error
        assert result.retried == 1
        # A transport error never disables the subscription
        assert await _enabled_endpoints(db_session) == {A, B}

    @pytest.mark.unit
    async def test_transport_error_until_max_attempts_fails_job(
        self, db_session: AsyncSession, subscription_factory, fake_push_sender
    ):
        await subscription_factory(A)
        fake_push_sender.fail(A, 503)
        job_id = await _enqueue(db_session)
        queue = NotificationQueue(db_session)

        dispatcher = Dispatcher(db_session, fake_push_sender)
        for _ in range(settings.NOTIFICATION_MAX_ATTEMPTS):
            job = await _job(db_session, job_id)
            job.run_at = job.created_at
            await db_session.commit()
            await dispatcher.run()

        job = await queue.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == settings.NOTIFICATION_MAX_ATTEMPTS

    @pytest.mark.unit
    async def test_missing_tenant_fails_without_retry(self, db_session: AsyncSession, fake_push_sender):
        job_id = await _enqueue(db_session, tenant_id=None)

        result = await Dispatcher(db_session, fake_push_sender).run()

        job = await _job(db_session, job_id)
        assert job.status == JobStatus.FAILED
        assert job.last_error == "missing tenant"
        assert result.failed == 1

    @pytest.mark.unit
    async def test_unexpected_error_in_one_job_does_not_stop_batch(
        self, db_session: AsyncSession, subscription_factory, fake_push_sender
    ):
        await subscription_factory(A)
        broken = await _enqueue(db_session, "k-broken")
        healthy = await _enqueue(db_session, "k-healthy")

        dispatcher = Dispatcher(db_session, fake_push_sender)
        original = dispatcher.registry.list_enabled
        calls = {"n": 0}

        async def flaky_list_enabled(tenant_id):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("connection reset")
            return await original(tenant_id)

        with patch.object(dispatcher.registry, "list_enabled", side_effect=flaky_list_enabled):
            result = await dispatcher.run()

        assert (await _job(db_session, broken)).status == JobStatus.PENDING
        assert "connection reset" in (await _job(db_session, broken)).last_error
        assert (await _job(db_session, healthy)).status == JobStatus.SUCCESS
        assert result.retried == 1
        assert result.succeeded == 1

    @pytest.mark.unit
    async def test_job_claimed_elsewhere_is_skipped(self, db_session: AsyncSession, fake_push_sender):
        await _enqueue(db_session)
        dispatcher = Dispatcher(db_session, fake_push_sender)

        with patch.object(dispatcher.queue, "claim", AsyncMock(return_value=False)):
            result = await dispatcher.run()

        assert result.skipped == 1
        assert result.processed == 0


class TestTickLock:

    @pytest.mark.unit
    async def test_tick_skipped_when_lock_held(self, db_session: AsyncSession, fake_push_sender, fake_redis):
        job_id = await _enqueue(db_session)
        await fake_redis.set(DISPATCH_LOCK_KEY, "someone-else")

        result = await run_dispatch_tick(db_session, fake_push_sender)

        assert result is None
        assert (await _job(db_session, job_id)).status == JobStatus.PENDING

    @pytest.mark.unit
    async def test_tick_releases_lock(self, db_session: AsyncSession, fake_push_sender, fake_redis):
        await _enqueue(db_session)

        result = await run_dispatch_tick(db_session, fake_push_sender)

        assert result.processed == 1
        assert await fake_redis.get(DISPATCH_LOCK_KEY) is None


class TestUnresponsiveEndpoint:

    @pytest.mark.unit
    async def test_hung_endpoint_times_out_without_holding_the_others(
        self, db_session: AsyncSession, subscription_factory
    ):
        hung = await subscription_factory(A)
        healthy = await subscription_factory(B)

        def _webpush(subscription_info, **kwargs):
            if subscription_info["endpoint"] == A:
                time.sleep(2)

        with patch("app.domain.services.push_sender.Vapid"):
            sender = WebPushSender(
                VapidCredentials(subject="mailto:ops@example.com", public_key="BPub", private_key="priv"),
                timeout_seconds=0.2,
            )
        with patch("app.domain.services.push_sender.webpush", MagicMock(side_effect=_webpush)):
            started = time.monotonic()
            outcome = await Dispatcher(db_session, sender).deliver([hung, healthy], PAYLOAD)
            elapsed = time.monotonic() - started

        assert outcome.delivered == 1
        assert len(outcome.errors) == 1
        assert "timed out" in outcome.errors[0]
        assert outcome.disabled_subscription_ids == []
        assert elapsed < 2
        assert await _enabled_endpoints(db_session) == {A, B}
