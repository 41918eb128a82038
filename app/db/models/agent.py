"""
Agent Model - named integrations that report through /api/webhooks/{agent_id}
"""
import uuid

from sqlalchemy import Column, String, DateTime, UniqueConstraint

from app.db.database import Base, utcnow


class Agent(Base):
    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(255), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    status = Column(String(20), default="active", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_agents_tenant_name"),
    )
