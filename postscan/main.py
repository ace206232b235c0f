"""postscan - Posts maintenance batch scanner service."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from postscan.db.database import init_db, close_db
from postscan.utils.config import get_config, get_settings
from postscan.utils.logging import setup_logging
from postscan.core.scanner import build_coordinator
from postscan.core.scheduler import (
    SchedulerTrigger,
    create_scheduler,
    setup_scheduler,
    shutdown_scheduler,
)
from postscan.utils.version import VERSION

# Import routes
from postscan.api.routes import (
    scan,
    settings as settings_routes,
    activity,
    health,
)

# Setup logging first
_settings = get_settings()
setup_logging(_settings.log_level, _settings.log_dir)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting postscan", version=VERSION)

    # Initialize database
    await init_db()

    # Scheduler drives the batch chain
    config = get_config()
    scheduler = create_scheduler(get_settings())
    coordinator = build_coordinator(SchedulerTrigger(scheduler))
    setup_scheduler(scheduler, coordinator, config.scan)

    app.state.scheduler = scheduler
    app.state.coordinator = coordinator

    # Pick up a scan whose next batch was lost with the previous process
    if await coordinator.resume():
        logger.info("Interrupted scan resumed")

    logger.info("Configuration loaded",
                default_batch_size=config.scan.default_batch_size,
                scheduled_scan=config.scan.scheduled_scan_enabled)

    yield

    # Cleanup
    logger.info("Shutting down postscan")
    shutdown_scheduler(scheduler)
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="postscan",
    description="Posts maintenance batch scanner",
    version=VERSION,
    lifespan=lifespan,
)

# CORS origins come from the environment; "*" or unset allows all
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "").split(",") if os.environ.get("CORS_ORIGINS") else []
allow_all_origins = os.environ.get("CORS_ORIGINS") == "*" or not CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(scan.router, prefix="/api/posts-maintenance")
app.include_router(settings_routes.router, prefix="/api/settings")
app.include_router(activity.router, prefix="/api/activity")
app.include_router(health.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "message": "postscan API",
        "version": VERSION,
        "docs": "/docs",
    }
