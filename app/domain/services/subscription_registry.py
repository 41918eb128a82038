"""
Subscription Registry - per-tenant Web Push endpoints
"""
from __future__ import annotations

from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete

from app.core.logging import get_logger
from app.db.compat import upsert
from app.db.database import utcnow
from app.db.models.push_subscription import PushSubscription

logger = get_logger(__name__)


class SubscriptionRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(
        self,
        tenant_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: str | None = None,
    ) -> int:
        """
        Register a device, or refresh it if (tenant_id, endpoint) exists.

        Re-subscribing always re-enables: a browser that subscribes again has a
        working endpoint even if an earlier delivery saw it as gone.
        """
        now = utcnow()
        subscription_id = await upsert(
            self.db,
            PushSubscription,
            {
                "tenant_id": tenant_id,
                "endpoint": endpoint,
                "p256dh": p256dh,
                "auth": auth,
                "user_agent": user_agent,
                "enabled": True,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=("tenant_id", "endpoint"),
            update_columns=("p256dh", "auth", "user_agent", "enabled", "updated_at"),
        )
        await self.db.commit()
        logger.info(
            "Push subscription saved",
            extra_data={"tenant_id": tenant_id, "subscription_id": subscription_id},
        )
        return subscription_id

    async def list_enabled(self, tenant_id: str) -> List[PushSubscription]:
        result = await self.db.execute(
            select(PushSubscription)
            .where(PushSubscription.tenant_id == tenant_id, PushSubscription.enabled.is_(True))
            .order_by(PushSubscription.id)
        )
        return list(result.scalars().all())

    async def disable(self, subscription_id: int) -> bool:
        """One-way enabled -> disabled. True when this call flipped it."""
        result = await self.db.execute(
            update(PushSubscription)
            .where(PushSubscription.id == subscription_id, PushSubscription.enabled.is_(True))
            .values(enabled=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        disabled = result.rowcount == 1
        if disabled:
            logger.info("Push subscription disabled", extra_data={"subscription_id": subscription_id})
        return disabled

    async def remove(self, tenant_id: str, endpoint: str) -> bool:
        """Hard delete on explicit tenant request"""
        result = await self.db.execute(
            delete(PushSubscription).where(
                PushSubscription.tenant_id == tenant_id,
                PushSubscription.endpoint == endpoint,
            )
        )
        await self.db.commit()
        return result.rowcount > 0
