"""
Health and Status Endpoints for Monitoring.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from listsync.core.config import get_settings
from listsync.db.session import get_async_engine
from listsync.services.crm_factory import is_crm_available
from listsync.services.pipeline.leases import get_session_leases

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    environment: str
    database_connected: bool
    crm_available: bool
    active_syncs: int


async def check_database() -> bool:
    """True if the database answers a trivial query."""
    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check with database and CRM status.

    Returns:
        "healthy" when the database is reachable, "unhealthy" otherwise
    """
    database_connected = await check_database()
    return HealthResponse(
        status="healthy" if database_connected else "unhealthy",
        environment=get_settings().app_env,
        database_connected=database_connected,
        crm_available=is_crm_available(),
        active_syncs=get_session_leases().active_count(),
    )
