"""
Tenant Settings Service - notification preferences
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.logging import get_logger
from app.db.compat import upsert
from app.db.database import utcnow
from app.db.models.tenant_settings import TenantSettings

logger = get_logger(__name__)

DEFAULT_PUSH_ENABLED = True
DEFAULT_SOUND_ENABLED = True


class TenantSettingsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, tenant_id: str) -> TenantSettings | None:
        result = await self.db.execute(
            select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def is_push_enabled(self, tenant_id: str | None) -> bool:
        """Push stays on until the tenant explicitly turns it off"""
        if not tenant_id:
            return True
        current = await self.get(tenant_id)
        return DEFAULT_PUSH_ENABLED if current is None else current.push_enabled

    async def update(
        self,
        tenant_id: str,
        *,
        push_enabled: bool | None = None,
        sound_enabled: bool | None = None,
    ) -> TenantSettings:
        current = await self.get(tenant_id)
        values = {
            "tenant_id": tenant_id,
            "push_enabled": push_enabled if push_enabled is not None else (
                current.push_enabled if current else DEFAULT_PUSH_ENABLED
            ),
            "sound_enabled": sound_enabled if sound_enabled is not None else (
                current.sound_enabled if current else DEFAULT_SOUND_ENABLED
            ),
            "updated_at": utcnow(),
        }
        await upsert(
            self.db,
            TenantSettings,
            values,
            conflict_columns=("tenant_id",),
            update_columns=("push_enabled", "sound_enabled", "updated_at"),
        )
        await self.db.commit()
        logger.info(
            "Tenant settings updated",
            extra_data={
                "tenant_id": tenant_id,
                "push_enabled": values["push_enabled"],
                "sound_enabled": values["sound_enabled"],
            },
        )
        result = await self.db.execute(
            select(TenantSettings)
            .where(TenantSettings.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
