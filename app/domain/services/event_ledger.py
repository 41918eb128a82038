"""
Event Ledger - exactly-once acceptance of inbound webhook events.

Webhook senders retry; the ledger is what makes those retries harmless. The
unique (provider, provider_event_id) constraint decides, inside one INSERT,
which delivery is the first.
"""
from __future__ import annotations

from typing import Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.logging import get_logger
from app.db.compat import insert_ignore
from app.db.database import utcnow
from app.db.models.inbound_event import InboundEvent, InboundEventStatus

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 100


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return max(1, min(MAX_LIST_LIMIT, limit))


class EventLedger:
    """Writes go through the caller's session; the caller commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_if_new(
        self,
        provider: str,
        provider_event_id: str,
        tenant_id: str | None,
        payload: dict[str, Any],
    ) -> tuple[InboundEvent, bool]:
        """
        Record an event unless (provider, provider_event_id) is already known.

        Returns:
            (record, is_new). For a replay the stored record is returned and
            nothing is written.
        """
        new_id = await insert_ignore(
            self.db,
            InboundEvent,
            {
                "provider": provider,
                "provider_event_id": provider_event_id,
                "tenant_id": tenant_id,
                "payload": payload,
                "status": InboundEventStatus.PENDING,
                "received_at": utcnow(),
            },
            conflict_columns=("provider", "provider_event_id"),
        )

        if new_id is not None:
            record = await self.db.get(InboundEvent, new_id)
            return record, True

        result = await self.db.execute(
            select(InboundEvent).where(
                InboundEvent.provider == provider,
                InboundEvent.provider_event_id == provider_event_id,
            )
        )
        record = result.scalar_one()
        logger.info(
            "Duplicate event ignored",
            extra_data={
                "provider": provider,
                "provider_event_id": provider_event_id,
                "event_id": record.id,
            },
        )
        return record, False

    async def mark_processed(self, event: InboundEvent) -> None:
        event.status = InboundEventStatus.PROCESSED
        event.processed_at = utcnow()

    async def list_for_tenant(self, tenant_id: str, limit: int | None = None) -> List[InboundEvent]:
        """Newest first; limit clamped to 1..100, default 50"""
        result = await self.db.execute(
            select(InboundEvent)
            .where(InboundEvent.tenant_id == tenant_id)
            .order_by(InboundEvent.received_at.desc(), InboundEvent.id.desc())
            .limit(clamp_limit(limit))
        )
        return list(result.scalars().all())
