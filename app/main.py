"""
Finished Notify - FastAPI application

Accepts task-finished webhooks and hands them to the notification queue;
Celery workers (app.workers) deliver the queued jobs as Web Push.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import settings
from app.core.exceptions import PushNotConfiguredError
from app.core.logging import get_logger, setup_logging
from app.core.middleware import CORRELATION_HEADER, setup_exception_handlers, setup_middleware
from app.db.database import Base, engine
from app.domain.services.push_sender import build_push_sender

setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME,
)

logger = get_logger(__name__)

# Used only when DEBUG is on and ALLOWED_ORIGINS is empty
_DEV_ORIGINS = ["http://localhost", "http://localhost:3000", "http://127.0.0.1:3000"]

_OPENAPI_TAGS = [
    {"name": "webhooks", "description": "Task and agent events coming in."},
    {"name": "push", "description": "Web Push subscriptions, test sends and the dispatcher trigger."},
    {"name": "tenant", "description": "API keys, agents, preferences and recent tasks."},
    {"name": "admin", "description": "Notification job inspection and replay."},
    {"name": "Health", "description": "Liveness and readiness checks."},
]


def _allowed_origins() -> list[str]:
    origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
    if not origins and settings.DEBUG:
        return list(_DEV_ORIGINS)
    return origins


def _configure_cors(application: FastAPI) -> None:
    origins = _allowed_origins()
    if not origins:
        return
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", CORRELATION_HEADER],
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Accepts task-finished webhooks and delivers them as Web Push notifications.",
        openapi_tags=_OPENAPI_TAGS,
    )
    setup_middleware(application)
    setup_exception_handlers(application)
    _configure_cors(application)
    application.include_router(api_router, prefix="/api")
    # Set on startup; stays None while VAPID is not configured
    application.state.push_sender = None
    return application


app = create_app()


async def _init_database() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        # create_all never alters existing tables; the partial indexes are PostgreSQL only
        if conn.dialect.name == "postgresql":
            from app.db.migrations import run_all_migrations

            await run_all_migrations(conn)
    logger.info("Database schema ready", extra_data={"dialect": engine.dialect.name})


def _init_push_sender() -> None:
    try:
        app.state.push_sender = build_push_sender()
    except PushNotConfiguredError as e:
        # Intake keeps working; push endpoints answer 503 until VAPID is set
        logger.warning("Web Push disabled", extra_data=e.details)


@app.on_event("startup")
async def startup() -> None:
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await _init_database()
    _init_push_sender()


@app.on_event("shutdown")
async def shutdown() -> None:
    from app.core.redis_client import close_redis

    logger.info("Shutting down application")
    await close_redis()
    await engine.dispose()


@app.get(
    "/health",
    summary="Liveness check",
    description="Process is up. Checks no dependencies, so a DB outage never triggers a restart.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness check",
    responses={
        200: {
            "description": "All dependencies available",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "db": "ok",
                        "redis": "ok",
                        "celery": "ok",
                        "web_push": "ok",
                    }
                }
            },
        },
        503: {"description": "At least one dependency unavailable"},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    return JSONResponse(content=result, status_code=200 if result["status"] == "healthy" else 503)
