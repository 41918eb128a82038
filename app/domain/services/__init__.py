"""
Domain Services
"""
from app.domain.services.agent_service import AgentService
from app.domain.services.credential_service import CredentialService
from app.domain.services.dispatcher import Dispatcher
from app.domain.services.event_ledger import EventLedger
from app.domain.services.intake_service import IntakeService
from app.domain.services.notification_queue import NotificationQueue
from app.domain.services.subscription_registry import SubscriptionRegistry
from app.domain.services.tenant_settings_service import TenantSettingsService

__all__ = [
    "AgentService",
    "CredentialService",
    "Dispatcher",
    "EventLedger",
    "IntakeService",
    "NotificationQueue",
    "SubscriptionRegistry",
    "TenantSettingsService",
]
