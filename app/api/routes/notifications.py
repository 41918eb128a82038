"""
Test notification - lets a tenant check that their devices receive pushes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_tenant
from app.api.dependencies.push import get_push_sender
from app.api.schemas import NotificationTestResponse
from app.core.logging import get_logger
from app.db.database import get_db
from app.domain.services.dispatcher import Dispatcher
from app.domain.services.push_sender import WebPushSender, build_push_payload

logger = get_logger(__name__)

router = APIRouter()

TEST_TITLE = "Test notification"
TEST_BODY = "Push notifications are working."


@router.post("/test", response_model=NotificationTestResponse)
async def send_test_notification(
    tenant_id: str = Depends(get_current_tenant),
    sender: WebPushSender = Depends(get_push_sender),
    db: AsyncSession = Depends(get_db),
) -> NotificationTestResponse:
    """Delivered directly, bypassing the job queue; stale devices are disabled as usual"""
    outcome = await Dispatcher(db, sender).deliver_to_tenant(
        tenant_id, build_push_payload(TEST_TITLE, TEST_BODY)
    )
    logger.info(
        "Test notification sent",
        extra_data={
            "tenant_id": tenant_id,
            "attempted": outcome.attempted,
            "delivered": outcome.delivered,
            "disabled": len(outcome.disabled_subscription_ids),
        },
    )
    return NotificationTestResponse(
        success=outcome.delivered > 0,
        sent=outcome.delivered,
        failed=len(outcome.errors),
        disabledSubscriptions=len(outcome.disabled_subscription_ids),
    )
