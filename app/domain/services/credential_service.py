"""
Credential Service - API key issuance and resolution
"""
from __future__ import annotations

from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete

from app.core.exceptions import (
    InvalidCredentialError,
    InvalidKeyFormatError,
    NotFoundException,
    ValidationException,
)
from app.core.config import settings
from app.core.logging import get_logger
from app.core.security import (
    generate_api_key,
    hash_api_key,
    key_display_prefix,
    has_api_key_format,
)
from app.db.database import utcnow
from app.db.models.api_key import ApiKey

logger = get_logger(__name__)

MAX_KEY_NAME_LENGTH = 100


class CredentialService:
    """
    Issues API keys and resolves raw keys back to their tenant.

    The raw key exists only in the return value of ``issue``; the database
    holds its SHA-256 digest, which is what ``resolve`` looks up.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(self, tenant_id: str, name: str) -> tuple[str, ApiKey]:
        """Create a key. Returns (raw_key, record); commit included."""
        name = (name or "").strip()
        if not name:
            raise ValidationException("API key name is required", field="name")
        if len(name) > MAX_KEY_NAME_LENGTH:
            raise ValidationException(
                f"API key name must be at most {MAX_KEY_NAME_LENGTH} characters",
                field="name",
            )

        raw_key = generate_api_key()
        record = ApiKey(
            tenant_id=tenant_id,
            name=name,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_display_prefix(raw_key),
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(
            "API key issued",
            extra_data={"tenant_id": tenant_id, "key_id": record.id, "key_prefix": record.key_prefix},
        )
        return raw_key, record

    async def resolve(self, raw_key: str) -> ApiKey:
        """
        Map a raw key to its record.

        Raises:
            InvalidKeyFormatError: the key does not carry the expected prefix
            InvalidCredentialError: no key with this digest exists
        """
        if not raw_key or not has_api_key_format(raw_key):
            raise InvalidKeyFormatError(settings.API_KEY_PREFIX)

        result = await self.db.execute(
            select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key))
        )
        record = result.scalar_one_or_none()
        if record is None:
            logger.warning(
                "Unknown API key presented",
                extra_data={"key_prefix": key_display_prefix(raw_key)},
            )
            raise InvalidCredentialError()
        return record

    async def touch_last_used(self, key_id: int) -> None:
        await self.db.execute(
            update(ApiKey).where(ApiKey.id == key_id).values(last_used_at=utcnow())
        )
        await self.db.commit()

    async def list_for_tenant(self, tenant_id: str) -> List[ApiKey]:
        result = await self.db.execute(
            select(ApiKey)
            .where(ApiKey.tenant_id == tenant_id)
            .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
        )
        return list(result.scalars().all())

    async def revoke(self, tenant_id: str, key_id: int) -> None:
        """Delete a key owned by the tenant; a key of another tenant is reported as missing"""
        result = await self.db.execute(
            delete(ApiKey).where(ApiKey.id == key_id, ApiKey.tenant_id == tenant_id)
        )
        if result.rowcount == 0:
            raise NotFoundException("ApiKey", key_id)
        await self.db.commit()
        logger.info("API key revoked", extra_data={"tenant_id": tenant_id, "key_id": key_id})


async def touch_api_key_last_used(key_id: int) -> None:
    """
    Background task: record key usage after the response went out.

    Opens its own session; the request session is closed by then. Failures are
    logged and dropped, the webhook caller has already been answered.
    """
    from app.db import database

    try:
        async with database.AsyncSessionLocal() as session:
            await CredentialService(session).touch_last_used(key_id)
    except Exception as e:
        logger.warning(
            "Failed to update API key last_used_at",
            extra_data={"key_id": key_id, "error": str(e)},
        )
