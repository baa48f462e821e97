"""
FastAPI dependencies wiring the pipeline services.

Tests replace these through app.dependency_overrides.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from listsync.core.config import get_settings
from listsync.core.interfaces.crm import CRMProvider
from listsync.services.crm_factory import CRMProviderError, get_crm_provider
from listsync.services.enrichment import Enricher, SerpEnrichmentService
from listsync.services.pipeline.auth_guard import AuthGuard
from listsync.services.pipeline.batch_runner import BatchRunner
from listsync.services.pipeline.enrichment_runner import EnrichmentRunner
from listsync.services.pipeline.leases import SessionLeaseRegistry, get_session_leases
from listsync.services.pipeline.rate_limiter import FixedDelayRateLimiter, RateLimiter
from listsync.services.pipeline.retention import RetentionReaper
from listsync.services.pipeline.row_processor import RowProcessor
from listsync.services.pipeline.session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)


def get_store() -> SessionStore:
    return get_session_store()


def get_leases() -> SessionLeaseRegistry:
    return get_session_leases()


def get_account_id(x_account_id: Annotated[str | None, Header()] = None) -> str:
    """Account of the caller; the default account when the header is absent."""
    return x_account_id or get_settings().default_account_id


def get_crm() -> CRMProvider:
    """The active CRM provider, or 503 if none is configured."""
    try:
        provider = get_crm_provider()
    except CRMProviderError as e:
        logger.error(f"❌ CRM provider unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": str(e), "code": "crm_unavailable"},
        )

    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "No CRM provider configured", "code": "crm_unavailable"},
        )
    return provider


def get_sync_rate_limiter() -> RateLimiter:
    return FixedDelayRateLimiter(get_settings().sync_row_delay_seconds)


def get_enrichment_rate_limiter() -> RateLimiter:
    return FixedDelayRateLimiter(get_settings().enrichment_delay_seconds)


@lru_cache
def get_enricher() -> Enricher:
    settings = get_settings()
    return SerpEnrichmentService(api_key=settings.serp_api_key, api_url=settings.serp_api_url)


def get_batch_runner(
    store: Annotated[SessionStore, Depends(get_store)],
    provider: Annotated[CRMProvider, Depends(get_crm)],
    rate_limiter: Annotated[RateLimiter, Depends(get_sync_rate_limiter)],
    leases: Annotated[SessionLeaseRegistry, Depends(get_leases)],
) -> BatchRunner:
    return BatchRunner(
        store=store,
        processor=RowProcessor(provider),
        auth_guard=AuthGuard(provider),
        rate_limiter=rate_limiter,
        leases=leases,
        page_size=get_settings().sync_page_size,
        stale_after_seconds=get_settings().sync_stale_after_seconds,
    )


def get_enrichment_runner(
    store: Annotated[SessionStore, Depends(get_store)],
    enricher: Annotated[Enricher, Depends(get_enricher)],
    rate_limiter: Annotated[RateLimiter, Depends(get_enrichment_rate_limiter)],
    leases: Annotated[SessionLeaseRegistry, Depends(get_leases)],
) -> EnrichmentRunner:
    return EnrichmentRunner(
        store=store,
        enricher=enricher,
        rate_limiter=rate_limiter,
        leases=leases,
        page_size=get_settings().sync_page_size,
    )


def get_retention_reaper(
    store: Annotated[SessionStore, Depends(get_store)],
    leases: Annotated[SessionLeaseRegistry, Depends(get_leases)],
) -> RetentionReaper:
    return RetentionReaper(store=store, retention_days=get_settings().retention_days, leases=leases)
