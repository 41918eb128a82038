"""
Notification preferences of the signed-in tenant
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_tenant
from app.api.schemas import UserSettingsIn, UserSettingsResponse
from app.db.database import get_db
from app.domain.services.tenant_settings_service import (
    DEFAULT_PUSH_ENABLED,
    DEFAULT_SOUND_ENABLED,
    TenantSettingsService,
)

router = APIRouter()


@router.get("", response_model=UserSettingsResponse)
async def get_settings(
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> UserSettingsResponse:
    current = await TenantSettingsService(db).get(tenant_id)
    if current is None:
        return UserSettingsResponse(pushEnabled=DEFAULT_PUSH_ENABLED, soundEnabled=DEFAULT_SOUND_ENABLED)
    return UserSettingsResponse(pushEnabled=current.push_enabled, soundEnabled=current.sound_enabled)


@router.post("", response_model=UserSettingsResponse)
async def update_settings(
    body: UserSettingsIn,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> UserSettingsResponse:
    """Fields left out of the body keep their current value"""
    updated = await TenantSettingsService(db).update(
        tenant_id,
        push_enabled=body.pushEnabled,
        sound_enabled=body.soundEnabled,
    )
    return UserSettingsResponse(pushEnabled=updated.push_enabled, soundEnabled=updated.sound_enabled)
