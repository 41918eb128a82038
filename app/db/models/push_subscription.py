"""
Push Subscription Model - one row per device that opted in to Web Push
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, UniqueConstraint

from app.db.database import Base, utcnow


class PushSubscription(Base):
    """Browser push subscription; disabled (not deleted) when the push service reports it gone"""

    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(255), nullable=False, index=True)

    endpoint = Column(Text, nullable=False)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)
    user_agent = Column(String(500), nullable=True)

    enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "endpoint", name="uq_push_subscriptions_tenant_endpoint"),
    )
