"""
API key management for the signed-in tenant
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_tenant
from app.api.schemas import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyResponse
from app.db.database import get_db
from app.domain.services.credential_service import CredentialService

router = APIRouter()


@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys(
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> List[ApiKeyResponse]:
    keys = await CredentialService(db).list_for_tenant(tenant_id)
    return [
        ApiKeyResponse(
            id=key.id,
            name=key.name,
            keyPrefix=key.key_prefix,
            lastUsedAt=key.last_used_at,
            createdAt=key.created_at,
        )
        for key in keys
    ]


@router.post("", response_model=ApiKeyCreatedResponse, status_code=201)
async def create_api_key(
    body: ApiKeyCreate,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ApiKeyCreatedResponse:
    """The raw key is returned here once and cannot be retrieved later"""
    raw_key, record = await CredentialService(db).issue(tenant_id, body.name)
    return ApiKeyCreatedResponse(
        id=record.id,
        name=record.name,
        keyPrefix=record.key_prefix,
        key=raw_key,
    )


@router.delete("/{key_id}")
async def revoke_api_key(
    key_id: int,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await CredentialService(db).revoke(tenant_id, key_id)
    return {"success": True}
