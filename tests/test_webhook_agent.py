"""
End-to-end tests for POST /api/webhooks/{agent_id}
"""
import os
import uuid
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ErrorCode
from app.core.security import sign_request_body
from app.db.models.inbound_event import InboundEvent
from app.db.models.notification_job import NotificationJob
from tests.conftest import TEST_TENANT

EVENT = {"event_type": "run.completed", "provider_event_id": "run-42", "message": "Nightly run done"}


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count(model.id)))).scalar_one()


class TestAgentWebhook:

    @pytest.mark.integration
    async def test_accepts_event_for_agent_tenant(
        self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret: str
    ):
        agent = await agent_factory("nightly")

        response = await test_client.post(
            f"/api/webhooks/{agent.id}", json=EVENT, headers={"x-agent-secret": agent_secret}
        )

        assert response.status_code == 200
        assert response.json()["duplicate"] is False
        job = (await db_session.execute(select(NotificationJob))).scalar_one()
        assert job.tenant_id == TEST_TENANT
        assert job.payload["title"] == "nightly"
        assert job.payload["body"] == "Nightly run done"
        assert job.payload["data"]["agentId"] == agent.id
        assert job.payload["data"]["eventType"] == "run.completed"

    @pytest.mark.integration
    async def test_secret_in_query_string(
        self, test_client: AsyncClient, agent_factory, agent_secret: str
    ):
        agent = await agent_factory()

        response = await test_client.post(f"/api/webhooks/{agent.id}?secret={agent_secret}", json=EVENT)

        assert response.status_code == 200

    @pytest.mark.integration
    async def test_replay_is_duplicate(
        self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret: str
    ):
        agent = await agent_factory()
        headers = {"x-agent-secret": agent_secret}

        await test_client.post(f"/api/webhooks/{agent.id}", json=EVENT, headers=headers)
        second = await test_client.post(f"/api/webhooks/{agent.id}", json=EVENT, headers=headers)

        assert second.json()["duplicate"] is True
        assert await _count(db_session, NotificationJob) == 1

    @pytest.mark.integration
    async def test_same_event_id_on_two_agents_is_not_duplicate(
        self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret: str
    ):
        first_agent = await agent_factory("one")
        second_agent = await agent_factory("two")
        headers = {"x-agent-secret": agent_secret}

        await test_client.post(f"/api/webhooks/{first_agent.id}", json=EVENT, headers=headers)
        await test_client.post(f"/api/webhooks/{second_agent.id}", json=EVENT, headers=headers)

        assert await _count(db_session, NotificationJob) == 2

    @pytest.mark.integration
    async def test_unknown_agent(self, test_client: AsyncClient, agent_secret: str):
        response = await test_client.post(
            f"/api/webhooks/{uuid.uuid4()}", json=EVENT, headers={"x-agent-secret": agent_secret}
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == ErrorCode.AGENT_NOT_FOUND.value

    @pytest.mark.integration
    async def test_wrong_secret(self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret):
        agent = await agent_factory()

        response = await test_client.post(
            f"/api/webhooks/{agent.id}", json=EVENT, headers={"x-agent-secret": "nope"}
        )

        assert response.status_code == 401
        assert await _count(db_session, InboundEvent) == 0

    @pytest.mark.integration
    async def test_secret_not_configured(self, test_client: AsyncClient, agent_factory):
        agent = await agent_factory()

        with patch.object(settings, "AGENT_WEBHOOK_SECRET", ""):
            response = await test_client.post(f"/api/webhooks/{agent.id}", json=EVENT)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == ErrorCode.WEBHOOK_SECRET_NOT_CONFIGURED.value

    @pytest.mark.integration
    async def test_malformed_event(self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret):
        agent = await agent_factory()

        response = await test_client.post(
            f"/api/webhooks/{agent.id}",
            json={"event_type": "run.completed", "message": "no id"},
            headers={"x-agent-secret": agent_secret},
        )

        assert response.status_code == 400
        assert await _count(db_session, InboundEvent) == 0


class TestAgentWebhookSignature:

    @pytest.fixture
    def signing_key(self):
        with patch.object(settings, "DISPATCH_SIGNING_KEY_CURRENT", "sign-current"), \
             patch.object(settings, "DISPATCH_SIGNING_KEY_NEXT", ""):
            yield "sign-current"

    @pytest.mark.integration
    async def test_valid_signature_accepted(
        self, test_client: AsyncClient, agent_factory, agent_secret, signing_key
    ):
        agent = await agent_factory()
        body = b'{"event_type":"run.completed","provider_event_id":"run-1","message":"done"}'

        response = await test_client.post(
            f"/api/webhooks/{agent.id}",
            content=body,
            headers={
                "x-agent-secret": agent_secret,
                "Content-Type": "application/json",
                "Upstash-Signature": sign_request_body(body, signing_key),
            },
        )

        assert response.status_code == 200

    @pytest.mark.integration
    async def test_bad_signature_rejected(
        self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret, signing_key
    ):
        agent = await agent_factory()

        response = await test_client.post(
            f"/api/webhooks/{agent.id}",
            json=EVENT,
            headers={"x-agent-secret": agent_secret, "Upstash-Signature": "v1=forged"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == ErrorCode.INVALID_SIGNATURE.value
        assert await _count(db_session, InboundEvent) == 0


class TestAgentId:

    @pytest.mark.integration
    @pytest.mark.parametrize("agent_id", ["does-not-exist", "12345", "not-a-uuid-at-all-0000000000000000"])
    async def test_non_uuid_is_400(
        self, test_client: AsyncClient, db_session: AsyncSession, agent_secret: str, agent_id: str
    ):
        response = await test_client.post(
            f"/api/webhooks/{agent_id}", json=EVENT, headers={"x-agent-secret": agent_secret}
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "agent_id"
        assert await _count(db_session, InboundEvent) == 0

    @pytest.mark.integration
    async def test_checked_before_the_secret(self, test_client: AsyncClient):
        response = await test_client.post("/api/webhooks/nope", json=EVENT)

        assert response.status_code == 400

    @pytest.mark.integration
    async def test_uppercase_uuid_resolves_the_agent(
        self, test_client: AsyncClient, agent_factory, agent_secret: str
    ):
        agent = await agent_factory()

        response = await test_client.post(
            f"/api/webhooks/{agent.id.upper()}", json=EVENT, headers={"x-agent-secret": agent_secret}
        )

        assert response.status_code == 200


class TestPerAgentSecret:

    @pytest.mark.integration
    async def test_used_when_shared_secret_is_unset(self, test_client: AsyncClient, agent_factory):
        agent = await agent_factory()

        with patch.object(settings, "AGENT_WEBHOOK_SECRET", ""), \
             patch.dict(os.environ, {f"AGENT_WEBHOOK_SECRET_{agent.id}": "per-agent"}):
            response = await test_client.post(
                f"/api/webhooks/{agent.id}", json=EVENT, headers={"x-agent-secret": "per-agent"}
            )

        assert response.status_code == 200

    @pytest.mark.integration
    async def test_overrides_the_shared_secret(
        self, test_client: AsyncClient, db_session: AsyncSession, agent_factory, agent_secret: str
    ):
        agent = await agent_factory()

        with patch.dict(os.environ, {f"AGENT_WEBHOOK_SECRET_{agent.id}": "per-agent"}):
            shared = await test_client.post(
                f"/api/webhooks/{agent.id}", json=EVENT, headers={"x-agent-secret": agent_secret}
            )
            own = await test_client.post(
                f"/api/webhooks/{agent.id}", json=EVENT, headers={"x-agent-secret": "per-agent"}
            )

        assert shared.status_code == 401
        assert own.status_code == 200
        assert await _count(db_session, InboundEvent) == 1

    @pytest.mark.integration
    async def test_other_agents_keep_the_shared_secret(
        self, test_client: AsyncClient, agent_factory, agent_secret: str
    ):
        locked = await agent_factory("locked")
        open_agent = await agent_factory("open")

        with patch.dict(os.environ, {f"AGENT_WEBHOOK_SECRET_{locked.id}": "per-agent"}):
            response = await test_client.post(
                f"/api/webhooks/{open_agent.id}", json=EVENT, headers={"x-agent-secret": agent_secret}
            )

        assert response.status_code == 200
