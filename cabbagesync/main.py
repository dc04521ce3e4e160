"""Main FastAPI application entry point."""

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from cabbagesync.config import get_settings
from cabbagesync.database import close_database, get_database
from cabbagesync.meetings.events import get_event_bus
from cabbagesync.oauth2.service import get_oauth2_service
from cabbagesync.sync.meeting_events import MeetingEventManager
from cabbagesync.sync.subscriber import CalendarSyncSubscriber

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info("Starting calendar sync service...")
    logger.info(f"Frontend at {settings.public_url}, database at {settings.database_path}")

    await get_database()
    logger.info("Database initialized")

    # Initialize encryption manager if key exists
    if os.path.exists(settings.encryption_key_file):
        try:
            from cabbagesync.encryption import init_encryption_manager
            from cabbagesync.config import get_encryption_key
            init_encryption_manager(get_encryption_key())
            logger.info("Encryption manager initialized")
        except RuntimeError as e:
            logger.warning(f"Could not initialize encryption: {e}")

    service = get_oauth2_service()
    for provider in service.providers.values():
        state = "enabled" if provider.is_configured() else "not configured"
        logger.info(f"{provider.type.display_name} calendar: {state}")

    # Meeting lifecycle events drive the events we create in respondents' calendars
    subscriber = CalendarSyncSubscriber(MeetingEventManager(service.providers))
    bus = get_event_bus()
    bus.subscribe(subscriber)

    # Start background scheduler
    try:
        from cabbagesync.jobs.scheduler import setup_scheduler
        setup_scheduler()
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")

    yield

    # Shutdown
    logger.info("Shutting down...")

    bus.unsubscribe(subscriber)

    try:
        from cabbagesync.jobs.scheduler import shutdown_scheduler
        shutdown_scheduler()
    except Exception as e:
        logger.error(f"Error stopping scheduler: {e}")

    await close_database()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="CabbageSync",
    description="External calendar synchronization for group meeting scheduling",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# The meeting frontend is the only browser client
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.public_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Liveness probe; also checks the database connection."""
    try:
        db = await get_database()
        await db.execute("SELECT 1")
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )


# Include routers
from cabbagesync.auth.routes import router as auth_router
from cabbagesync.api import api_router

app.include_router(auth_router)
app.include_router(api_router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cabbagesync.main:app",
        host="0.0.0.0",
        port=3000,
        log_level=settings.log_level.lower(),
        reload=False,
    )
