"""
API Key Model - hashed credentials for webhook callers
"""
from sqlalchemy import Column, Integer, String, DateTime, Index

from app.db.database import Base, utcnow


class ApiKey(Base):
    """An issued API key. The raw key is never stored, only its SHA-256 digest."""

    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(255), nullable=False, index=True)
    name = Column(String(100), nullable=False)

    key_hash = Column(String(64), nullable=False, unique=True)
    key_prefix = Column(String(16), nullable=False)  # display only, e.g. "fin_AbCdEfGh"

    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_api_keys_tenant_created", "tenant_id", "created_at"),
    )
