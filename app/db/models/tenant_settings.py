"""
Tenant Settings Model - per-tenant notification preferences
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from app.db.database import Base, utcnow


class TenantSettings(Base):
    """Absent row means defaults: push and sound enabled"""

    __tablename__ = "tenant_settings"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(255), nullable=False, unique=True)
    push_enabled = Column(Boolean, default=True, nullable=False)
    sound_enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
