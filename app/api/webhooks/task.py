"""
Task webhook - CLIs and agents report that a task finished.

    POST /api/webhook/task
    Authorization: Bearer fin_...
    {"title": "Build finished", "status": "success", "duration": 5120}

Retried deliveries with the same ``provider_event_id`` (or ``dedupe_key``)
get the same 200 response and never produce a second notification.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.webhook_auth import require_api_key
from app.api.schemas import TaskEventIn, WebhookAcceptedResponse
from app.core.logging import get_logger
from app.core.validation import parse_body
from app.db.database import get_db
from app.db.models.api_key import ApiKey
from app.domain.services.intake_service import IntakeService, task_event_to_canonical

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/task",
    response_model=WebhookAcceptedResponse,
    summary="Report a finished task",
    responses={
        400: {"description": "Malformed payload; nothing was recorded"},
        401: {"description": "Missing, malformed or unknown API key"},
    },
)
async def task_webhook(
    request: Request,
    api_key: ApiKey = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
) -> WebhookAcceptedResponse:
    # Raw body: validation errors must map to 400 MalformedPayload, not FastAPI's 422
    event = parse_body(TaskEventIn, await request.body())

    result = await IntakeService(db).accept(
        task_event_to_canonical(api_key.tenant_id, event.to_event())
    )
    return WebhookAcceptedResponse(
        duplicate=result.duplicate,
        eventId=result.event_id,
        taskId=result.event_id,
    )
