"""
Agent Service - named webhook integrations per tenant
"""
from __future__ import annotations

from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import AgentNotFoundError, ValidationException
from app.core.logging import get_logger
from app.db.compat import insert_ignore
from app.db.database import utcnow
from app.db.models.agent import Agent

logger = get_logger(__name__)


class AgentService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, agent_id: str) -> Agent:
        agent = await self.db.get(Agent, agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def get_or_create(self, tenant_id: str, name: str) -> Agent:
        """Agents are unique per (tenant, name); registering twice returns the first"""
        name = (name or "").strip()
        if not name:
            raise ValidationException("Agent name is required", field="name")

        await insert_ignore(
            self.db,
            Agent,
            {"tenant_id": tenant_id, "name": name, "status": "active", "created_at": utcnow()},
            conflict_columns=("tenant_id", "name"),
        )
        await self.db.commit()

        result = await self.db.execute(
            select(Agent).where(Agent.tenant_id == tenant_id, Agent.name == name)
        )
        agent = result.scalar_one()
        logger.info("Agent registered", extra_data={"tenant_id": tenant_id, "agent_id": agent.id})
        return agent

    async def list_for_tenant(self, tenant_id: str) -> List[Agent]:
        result = await self.db.execute(
            select(Agent).where(Agent.tenant_id == tenant_id).order_by(Agent.created_at, Agent.name)
        )
        return list(result.scalars().all())
