"""
Database Models
"""
from app.db.models.api_key import ApiKey
from app.db.models.inbound_event import InboundEvent, InboundEventStatus
from app.db.models.notification_job import NotificationJob, NotificationChannel, JobStatus
from app.db.models.push_subscription import PushSubscription
from app.db.models.agent import Agent
from app.db.models.tenant_settings import TenantSettings

__all__ = [
    "ApiKey",
    "InboundEvent",
    "InboundEventStatus",
    "NotificationJob",
    "NotificationChannel",
    "JobStatus",
    "PushSubscription",
    "Agent",
    "TenantSettings",
]
