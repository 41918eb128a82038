"""
Agent webhook - integrations registered as agents post their events here.

    POST /api/webhooks/{agent_id}?secret=...   (or x-agent-secret header)
    {"event_type": "run.completed", "provider_event_id": "evt_1", "message": "Done"}
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.webhook_auth import require_agent_secret, valid_agent_id, verify_optional_signature
from app.api.schemas import AgentEventIn
from app.core.logging import get_logger
from app.core.validation import parse_body
from app.db.database import get_db
from app.domain.services.agent_service import AgentService
from app.domain.services.intake_service import IntakeService, agent_event_to_canonical

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/{agent_id}",
    summary="Receive an agent event",
    dependencies=[Depends(require_agent_secret), Depends(verify_optional_signature)],
    responses={
        400: {"description": "Agent id is not a UUID, or malformed payload"},
        401: {"description": "Missing or wrong secret, or bad signature"},
        404: {"description": "Unknown agent"},
        500: {"description": "Webhook secret not configured"},
    },
)
async def agent_webhook(
    request: Request,
    agent_id: str = Depends(valid_agent_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = parse_body(AgentEventIn, await request.body())
    agent = await AgentService(db).get(agent_id)

    result = await IntakeService(db).accept(agent_event_to_canonical(agent, event.to_event()))
    return {
        "ok": True,
        "accepted": True,
        "duplicate": result.duplicate,
        "eventId": result.event_id,
    }
