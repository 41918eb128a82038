"""
Recent events received for the signed-in tenant
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_tenant
from app.api.schemas import TaskEventResponse, TaskListResponse
from app.db.database import get_db
from app.domain.services.event_ledger import EventLedger

router = APIRouter()


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    limit: Optional[int] = Query(None, description="1..100, default 50; out-of-range values are clamped"),
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> TaskListResponse:
    events = await EventLedger(db).list_for_tenant(tenant_id, limit)
    return TaskListResponse(
        tasks=[
            TaskEventResponse(
                id=event.id,
                provider=event.provider,
                status=event.status.value,
                payload=event.payload or {},
                receivedAt=event.received_at,
                processedAt=event.processed_at,
            )
            for event in events
        ]
    )
