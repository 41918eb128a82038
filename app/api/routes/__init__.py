"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.admin import router as admin_router
from app.api.routes.agents import router as agents_router
from app.api.routes.api_keys import router as api_keys_router
from app.api.routes.notifications import router as notifications_router
from app.api.routes.push import router as push_router
from app.api.routes.push_subscriptions import router as push_subscriptions_router
from app.api.routes.tasks import router as tasks_router
from app.api.routes.user_settings import router as user_settings_router
from app.api.webhooks.agent import router as agent_webhook_router
from app.api.webhooks.task import router as task_webhook_router

router = APIRouter()

# Inbound webhooks
router.include_router(task_webhook_router, prefix="/webhook", tags=["webhooks"])
router.include_router(agent_webhook_router, prefix="/webhooks", tags=["webhooks"])

# Delivery
router.include_router(push_router, prefix="/push", tags=["push"])
router.include_router(push_subscriptions_router, prefix="/push-subscriptions", tags=["push"])
router.include_router(notifications_router, prefix="/notifications", tags=["push"])

# Tenant
router.include_router(api_keys_router, prefix="/api-keys", tags=["tenant"])
router.include_router(agents_router, prefix="/agents", tags=["tenant"])
router.include_router(user_settings_router, prefix="/user-settings", tags=["tenant"])
router.include_router(tasks_router, prefix="/tasks", tags=["tenant"])

router.include_router(admin_router, prefix="/admin", tags=["admin"])
