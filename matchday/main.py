"""Matchday automation API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from matchday.automation.runner import build_automation_context
from matchday.config import get_settings
from matchday.database import AsyncSessionLocal, close_db, init_db
from matchday.routes import automation_router, core_router
from matchday.scheduler import start_scheduler, stop_scheduler
from matchday.security import limiter
from matchday.telemetry.sentry import init_sentry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize Sentry for error tracking (before FastAPI app creation)
# Only activates if SENTRY_DSN is set
init_sentry(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Matchday automation...")
    await init_db()

    ctx = build_automation_context(AsyncSessionLocal, settings)
    app.state.automation = ctx

    if settings.AUTOMATION_SCHEDULER_ENABLED:
        app.state.scheduler = start_scheduler(ctx)
    else:
        logger.info("[SCHEDULER] Disabled; waiting for external POST /automation/trigger")

    yield

    # Shutdown
    logger.info("Shutting down...")
    stop_scheduler()
    await ctx.dispatcher.close()
    await close_db()


app = FastAPI(
    title="Matchday Automation",
    description="Fixture lifecycle trigger scheduler for downstream AI workflows",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(core_router)
app.include_router(automation_router)
