"""
Push endpoints: dispatcher trigger and VAPID public key
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.push import get_push_sender
from app.api.dependencies.webhook_auth import verify_dispatch_signature
from app.api.schemas import DispatchResponse, VapidPublicKeyResponse
from app.core.logging import get_logger
from app.db.database import get_db
from app.domain.services.dispatcher import DispatchResult, run_dispatch_tick
from app.domain.services.push_sender import WebPushSender

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/dispatch",
    response_model=DispatchResponse,
    summary="Deliver due notification jobs",
    description=(
        "Called by an external scheduler. Signed with the request signing keys when "
        "they are configured. Returns zero counters when another tick is running."
    ),
    dependencies=[Depends(verify_dispatch_signature)],
)
async def dispatch(
    sender: WebPushSender = Depends(get_push_sender),
    db: AsyncSession = Depends(get_db),
) -> DispatchResponse:
    result = await run_dispatch_tick(db, sender) or DispatchResult()
    return DispatchResponse(**result.to_dict())


@router.get("/vapid-public-key", response_model=VapidPublicKeyResponse)
async def vapid_public_key(
    sender: WebPushSender = Depends(get_push_sender),
) -> VapidPublicKeyResponse:
    """Application server key for PushManager.subscribe()"""
    return VapidPublicKeyResponse(publicKey=sender.credentials.public_key)
