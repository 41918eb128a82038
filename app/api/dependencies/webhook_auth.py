"""
Authentication of inbound webhook calls.

- Task webhooks: ``Authorization: Bearer fin_...`` resolved through the
  credential store. ``last_used_at`` is written by a background task after
  the response, never on the request path.
- Agent webhooks: secret from ``x-agent-secret`` or ``?secret=``, checked
  against ``AGENT_WEBHOOK_SECRET_<agent_id>`` when set, else the shared one.
- Either may additionally carry a request signature header, which is verified
  whenever present.

Usage:
    @router.post("/task")
    async def task_webhook(
        ...,
        api_key: ApiKey = Depends(require_api_key),
    ):
        ...
"""
import uuid

from fastapi import BackgroundTasks, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InvalidCredentialError,
    InvalidSignatureError,
    ValidationException,
    WebhookSecretNotConfiguredError,
)
from app.core.logging import get_logger
from app.core.security import constant_time_equals, verify_request_signature
from app.db.database import get_db
from app.db.models.api_key import ApiKey
from app.domain.services.credential_service import CredentialService, touch_api_key_last_used

logger = get_logger(__name__)

SIGNATURE_HEADERS = ("upstash-signature", "x-qstash-signature")


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_api_key(
    background_tasks: BackgroundTasks,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> ApiKey:
    token = _bearer_token(authorization)
    if token is None:
        raise InvalidCredentialError("Missing or invalid Authorization header")

    api_key = await CredentialService(db).resolve(token)
    background_tasks.add_task(touch_api_key_last_used, api_key.id)
    return api_key


def signature_header(request: Request) -> str | None:
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


async def verify_optional_signature(request: Request) -> None:
    """Verify the signature header if the caller sent one"""
    header = signature_header(request)
    if header is None:
        return
    body = await request.body()
    if not verify_request_signature(header, body):
        logger.warning("Request signature mismatch", extra_data={"path": request.url.path})
        raise InvalidSignatureError()


async def verify_dispatch_signature(request: Request) -> None:
    """
    Dispatch trigger: with signing keys configured a valid signature is
    mandatory; without them the optional check applies.
    """
    if settings.signing_keys and signature_header(request) is None:
        raise InvalidSignatureError("Missing request signature")
    await verify_optional_signature(request)


def valid_agent_id(agent_id: str) -> str:
    """Path parameter check: agent ids are UUIDs, returned in canonical lowercase form"""
    try:
        return str(uuid.UUID(agent_id))
    except ValueError as e:
        raise ValidationException("Invalid agent id", field="agent_id") from e


async def require_agent_secret(
    agent_id: str = Depends(valid_agent_id),
    x_agent_secret: str | None = Header(None),
    secret: str | None = Query(None),
) -> None:
    expected = settings.agent_webhook_secret(agent_id)
    if not expected:
        logger.error("Agent webhook called but no webhook secret is configured", extra_data={"agent_id": agent_id})
        raise WebhookSecretNotConfiguredError()

    provided = x_agent_secret or secret
    if not provided or not constant_time_equals(provided, expected):
        logger.warning("Agent webhook with missing or wrong secret", extra_data={"agent_id": agent_id})
        raise InvalidCredentialError("Invalid webhook secret")
