"""
Shared fixtures

Every test gets its own in-memory SQLite database, a FakeRedis in place of
the real client, fresh circuit breakers and, for HTTP tests, an httpx client
bound to the app with a FakePushSender installed.
"""
# Settings are read at import time: JWT_SECRET_KEY is mandatory with DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "jwt-secret-used-only-by-the-test-suite")
os.environ.setdefault("WEBHOOK_RATE_LIMIT_MAX_REQUESTS", "100000")

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator
from unittest.mock import patch

import jwt as pyjwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import PushSubscriptionGoneError, PushTransportError
from app.db.database import Base, build_session_maker, get_db
from app.db.models.agent import Agent
from app.db.models.push_subscription import PushSubscription
from app.domain.services.credential_service import CredentialService
from app.domain.services.push_sender import VapidCredentials
from app.main import app

TEST_TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
TEST_AGENT_SECRET = "agent-secret-for-tests"
TEST_ADMIN_KEY = "admin-key-for-tests"


@pytest.fixture
async def session_maker() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # StaticPool: every session must see the same in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield build_session_maker(engine)
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(session_maker) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest.fixture
async def test_client(db_session: AsyncSession, session_maker, fake_push_sender) -> AsyncIterator[AsyncClient]:
    """Requests share ``db_session``; background work opens sessions on the same database"""
    async def _same_session():
        yield db_session

    app.dependency_overrides[get_db] = _same_session
    app.state.push_sender = fake_push_sender
    try:
        with patch("app.db.database.AsyncSessionLocal", session_maker):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                yield client
    finally:
        app.state.push_sender = None
        app.dependency_overrides.pop(get_db, None)


# ============================================================================
# Fake Web Push sender
# ============================================================================

class FakePushSender:
    """
    Records every send. ``fail(endpoint, status)`` makes an endpoint answer
    with that HTTP status: 404/410 are reported as gone, anything else as a
    transport error.
    """

    def __init__(self) -> None:
        self.credentials = VapidCredentials(
            subject="mailto:ops@example.com",
            public_key="BPublicKeyForTests",
            private_key="private-key-for-tests",
        )
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self._failures: dict[str, int] = {}

    def fail(self, endpoint: str, status_code: int) -> None:
        self._failures[endpoint] = status_code

    def recover(self, endpoint: str) -> None:
        self._failures.pop(endpoint, None)

    async def send(self, target, payload: dict[str, Any]) -> None:
        status_code = self._failures.get(target.endpoint)
        if status_code in (404, 410):
            raise PushSubscriptionGoneError(target.endpoint, status_code)
        if status_code is not None:
            raise PushTransportError(
                f"push service answered {status_code}",
                status_code=status_code,
            )
        self.sent.append((target.endpoint, payload))

    def endpoints_sent(self) -> list[str]:
        return [endpoint for endpoint, _ in self.sent]


@pytest.fixture
def fake_push_sender() -> FakePushSender:
    return FakePushSender()


# ============================================================================
# Auth helpers
# ============================================================================

def create_access_token(tenant_id: str, email: str | None = None, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Mint a token the way the identity provider does"""
    payload = {"sub": tenant_id, "exp": int((datetime.now(timezone.utc) + expires_in).timestamp())}
    if email:
        payload["email"] = email
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def tenant_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(TEST_TENANT)}"}


@pytest.fixture
def other_tenant_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(OTHER_TENANT)}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    with patch.object(settings, "ADMIN_API_KEY", TEST_ADMIN_KEY):
        yield {"X-Admin-API-Key": TEST_ADMIN_KEY}


@pytest.fixture
def agent_secret():
    with patch.object(settings, "AGENT_WEBHOOK_SECRET", TEST_AGENT_SECRET):
        yield TEST_AGENT_SECRET


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def api_key_factory(db_session: AsyncSession):
    """Issues a key; returns (raw_key, record)"""
    async def _issue(tenant_id: str = TEST_TENANT, name: str = "cli"):
        return await CredentialService(db_session).issue(tenant_id, name)

    return _issue


@pytest.fixture
async def api_key(api_key_factory) -> str:
    raw_key, _ = await api_key_factory()
    return raw_key


@pytest.fixture
def subscription_factory(db_session: AsyncSession):
    """Factory for creating push subscriptions"""
    async def _create(
        endpoint: str = "https://push.example.com/send/device-1",
        tenant_id: str = TEST_TENANT,
        enabled: bool = True,
    ) -> PushSubscription:
        subscription = PushSubscription(
            tenant_id=tenant_id,
            endpoint=endpoint,
            p256dh="BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM",
            auth="tBHItJI5svbpez7KI4CCXg",
            enabled=enabled,
        )
        db_session.add(subscription)
        await db_session.commit()
        await db_session.refresh(subscription)
        return subscription

    return _create


@pytest.fixture
def agent_factory(db_session: AsyncSession):
    async def _create(name: str = "deploy-bot", tenant_id: str = TEST_TENANT) -> Agent:
        agent = Agent(tenant_id=tenant_id, name=name)
        db_session.add(agent)
        await db_session.commit()
        await db_session.refresh(agent)
        return agent

    return _create


# ============================================================================
# Process-wide state
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_circuit_breakers():
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


class FakeRedis:
    """
    The handful of redis.asyncio calls the app makes, backed by a dict.
    Expiry is recorded in ``ttls`` but never enforced.
    """

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def eval(self, script: str, numkeys: int, *keys_and_args: str) -> int:
        """Understands only the compare-and-delete release script"""
        key, token = keys_and_args[0], keys_and_args[numkeys]
        if self.values.get(key) != token:
            return 0
        await self.delete(key)
        return 1

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self.ttls.pop(key, None)
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed

    async def aclose(self) -> None:
        self.values.clear()
        self.ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    redis = FakeRedis()

    async def _get_redis():
        return redis

    with patch("app.core.redis_client.get_redis", _get_redis):
        yield redis
