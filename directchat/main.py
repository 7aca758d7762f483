import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from directchat.api.common import handle_service_error
from directchat.api.routes import conversations, me, messages, realtime
from directchat.backend.feed import ChangeFeed
from directchat.core.clock import utcnow
from directchat.core.config import settings
from directchat.db import check_database_health
from directchat.services.exceptions import ServiceError
from directchat.services.migration_service import run_migrations
from directchat.services.provider import ServiceProvider
from directchat.services.realtime_dispatcher import RealtimeDispatcher

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting messaging service...")
    try:
        if settings.RUN_MIGRATIONS:
            await run_migrations()
        await check_database_health()
        logger.info("Database health check passed - application ready")
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        logger.error("Application startup aborted due to database issues")
        raise

    yield

    logger.info("Application shutting down...")
    dispatcher = ServiceProvider.peek(RealtimeDispatcher)
    if dispatcher is not None:
        await dispatcher.close()
    feed = ServiceProvider.peek(ChangeFeed)
    if feed is not None:
        await feed.close()


app = FastAPI(title="directchat", lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    """Service errors raised outside a route body, e.g. by the auth dependency."""
    try:
        handle_service_error(exc)
    except HTTPException as http_exc:
        return JSONResponse(
            status_code=http_exc.status_code,
            content={"detail": http_exc.detail},
            headers=http_exc.headers,
        )


app.include_router(conversations.conversations_router_instance)
app.include_router(me.me_router_instance)
app.include_router(messages.messages_router_instance)
app.include_router(realtime.realtime_router_instance)

Path(settings.MEDIA_ROOT).mkdir(parents=True, exist_ok=True)
app.mount(
    settings.MEDIA_BASE_URL,
    StaticFiles(directory=settings.MEDIA_ROOT),
    name="media",
)


@app.get("/health")
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}
