"""
Inbound Event Model - the idempotent event ledger.

One row per (provider, provider_event_id). Replays of the same id hit the
unique constraint and are reported as duplicates; they never create a second row.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum as SQLEnum, UniqueConstraint, Index

from app.db.database import Base, utcnow


class InboundEventStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"


class InboundEvent(Base):
    """A webhook event accepted exactly once"""

    __tablename__ = "inbound_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), nullable=False)  # "task", "agent"
    provider_event_id = Column(String(255), nullable=False)
    tenant_id = Column(String(255), nullable=True, index=True)

    payload = Column(JSON, nullable=False)
    status = Column(SQLEnum(InboundEventStatus), default=InboundEventStatus.PENDING, nullable=False)

    received_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "provider_event_id", name="uq_inbound_events_provider_event"),
        Index("ix_inbound_events_tenant_received", "tenant_id", "received_at"),
    )
