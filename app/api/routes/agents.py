"""
Agent registration - each agent gets its own webhook URL
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_tenant
from app.api.schemas import AgentCreate, AgentResponse
from app.db.database import get_db
from app.db.models.agent import Agent
from app.domain.services.agent_service import AgentService

router = APIRouter()


def _to_response(agent: Agent) -> AgentResponse:
    return AgentResponse(
        id=agent.id,
        name=agent.name,
        status=agent.status,
        webhookPath=f"/api/webhooks/{agent.id}",
        createdAt=agent.created_at,
    )


@router.get("", response_model=List[AgentResponse])
async def list_agents(
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> List[AgentResponse]:
    return [_to_response(agent) for agent in await AgentService(db).list_for_tenant(tenant_id)]


@router.post("", response_model=AgentResponse)
async def register_agent(
    body: AgentCreate,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> AgentResponse:
    agent = await AgentService(db).get_or_create(tenant_id, body.name)
    return _to_response(agent)
