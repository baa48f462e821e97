"""
ListSync - FastAPI Application Entry Point

Bulk contact-list import: upload, enrich, sync to HubSpot, and purge
row-level data after the retention period.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from listsync import __version__
from listsync.api.endpoints import health, hubspot, pipeline
from listsync.core.config import get_settings
from listsync.db.base import Base
from listsync.db.session import get_async_engine, get_session_maker
from listsync.services.pipeline.leases import get_session_leases
from listsync.services.pipeline.retention import RetentionReaper, run_retention_loop
from listsync.services.pipeline.session_store import SessionStore

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def init_database():
    """Initialize database tables."""
    # Import all models to ensure they're registered with Base
    from listsync import models  # noqa: F401

    async with get_async_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables initialized")


def start_retention_sweep() -> asyncio.Task | None:
    """Background purge loop; None when disabled by configuration."""
    interval = settings.retention_sweep_interval_seconds
    if interval <= 0:
        logger.info("ℹ️ Retention sweep disabled")
        return None

    reaper = RetentionReaper(
        store=SessionStore(get_session_maker()),
        retention_days=settings.retention_days,
        leases=get_session_leases(),
    )
    return asyncio.create_task(run_retention_loop(reaper, interval))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs startup and shutdown logic.
    """
    # Startup
    logger.info("🚀 Starting ListSync...")
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Debug Mode: {settings.app_debug}")
    logger.info(f"Retention: {settings.retention_days} days")

    await init_database()

    sweep_task = start_retention_sweep()

    logger.info("✅ Startup complete! Ready to accept requests.")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("👋 Shutting down ListSync...")
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    await get_async_engine().dispose()
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="ListSync",
    description="Bulk contact import with enrichment and HubSpot sync",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(pipeline.router, prefix="/api/v1", tags=["Pipeline"])
app.include_router(hubspot.router, prefix="/api/v1", tags=["HubSpot"])


@app.get("/", tags=["Health"])
async def root():
    """Service banner."""
    return {
        "status": "healthy",
        "service": "ListSync",
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "listsync.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
    )
