"""
Device opt-in / opt-out for Web Push
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_tenant
from app.api.schemas import PushSubscriptionDelete, PushSubscriptionIn, PushSubscriptionResponse
from app.core.exceptions import NotFoundException
from app.db.database import get_db
from app.domain.services.subscription_registry import SubscriptionRegistry

router = APIRouter()


@router.post("", response_model=PushSubscriptionResponse)
async def save_subscription(
    body: PushSubscriptionIn,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> PushSubscriptionResponse:
    subscription_id = await SubscriptionRegistry(db).upsert(
        tenant_id,
        body.endpoint,
        body.keys.p256dh,
        body.keys.auth,
        body.user_agent,
    )
    return PushSubscriptionResponse(id=subscription_id)


@router.delete("")
async def delete_subscription(
    body: PushSubscriptionDelete,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> dict:
    removed = await SubscriptionRegistry(db).remove(tenant_id, body.endpoint.strip())
    if not removed:
        raise NotFoundException("PushSubscription", body.endpoint)
    return {"success": True}
