"""
Intake Service - turns an authenticated, validated webhook into ledger + job.

Ledger row and notification job are written in one transaction: either the
event is recorded together with its job, or neither exists.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.agent import Agent
from app.db.models.notification_job import NotificationChannel
from app.domain.services.event_ledger import EventLedger
from app.domain.services.notification_queue import NotificationQueue, build_dedupe_key
from app.domain.services.push_sender import build_push_payload
from app.domain.services.tenant_settings_service import TenantSettingsService

logger = get_logger(__name__)

TASK_PROVIDER = "task"
AGENT_PROVIDER = "agent"

SUCCESS_TITLE = "Task Completed"
# failure and cancelled alike
UNSUCCESSFUL_TITLE = "Task Failed"


@dataclass(frozen=True)
class CanonicalEvent:
    """Provider-independent shape every integration is mapped onto"""
    provider: str
    provider_event_id: str
    tenant_id: str | None
    payload: dict[str, Any]
    dedupe_source: str
    notification: dict[str, Any]


@dataclass(frozen=True)
class IntakeResult:
    event_id: int
    is_new: bool
    job_id: int | None = None

    @property
    def duplicate(self) -> bool:
        return not self.is_new


def task_event_to_canonical(tenant_id: str, event: dict[str, Any]) -> CanonicalEvent:
    """
    Map a validated task webhook body onto a canonical event.

    Ledger keys are global, so the caller-supplied id is namespaced by tenant.
    Without any id the event gets a fresh uuid and is never deduplicated.
    """
    external_id = event.get("provider_event_id") or event.get("dedupe_key") or str(uuid.uuid4())
    status = event.get("status", "success")
    title = event["title"]
    return CanonicalEvent(
        provider=TASK_PROVIDER,
        provider_event_id=f"{tenant_id}:{external_id}",
        tenant_id=tenant_id,
        payload=event,
        dedupe_source=event.get("dedupe_key") or external_id,
        notification=build_push_payload(SUCCESS_TITLE if status == "success" else UNSUCCESSFUL_TITLE, title),
    )


def agent_event_to_canonical(agent: Agent, event: dict[str, Any]) -> CanonicalEvent:
    provider_event_id = event["provider_event_id"]
    notification = build_push_payload(agent.name, event["message"])
    notification["data"].update({
        "agentId": agent.id,
        "eventType": event["event_type"],
        "providerEventId": provider_event_id,
    })
    return CanonicalEvent(
        provider=AGENT_PROVIDER,
        provider_event_id=f"{agent.id}:{provider_event_id}",
        tenant_id=agent.tenant_id,
        payload=event,
        dedupe_source=f"{agent.id}:{event.get('dedupe_key') or provider_event_id}",
        notification=notification,
    )


class IntakeService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = EventLedger(db)
        self.queue = NotificationQueue(db)
        self.tenant_settings = TenantSettingsService(db)

    async def accept(self, event: CanonicalEvent) -> IntakeResult:
        record, is_new = await self.ledger.record_if_new(
            event.provider, event.provider_event_id, event.tenant_id, event.payload
        )
        if not is_new:
            event_id = record.id
            # Nothing was written; end the read transaction
            await self.db.rollback()
            return IntakeResult(event_id=event_id, is_new=False)

        job_id = None
        if await self.tenant_settings.is_push_enabled(event.tenant_id):
            job_id = await self.queue.enqueue_if_new(
                tenant_id=event.tenant_id,
                dedupe_key=build_dedupe_key(event.provider, event.tenant_id, event.dedupe_source),
                payload=event.notification,
                channel=NotificationChannel.PUSH,
                source_event_id=record.id,
            )
        else:
            logger.info(
                "Push disabled by tenant, event recorded without a job",
                extra_data={"tenant_id": event.tenant_id, "event_id": record.id},
            )

        await self.ledger.mark_processed(record)
        await self.db.commit()

        logger.info(
            "Webhook event accepted",
            extra_data={
                "provider": event.provider,
                "event_id": record.id,
                "tenant_id": event.tenant_id,
                "job_id": job_id,
            },
        )
        return IntakeResult(event_id=record.id, is_new=True, job_id=job_id)
