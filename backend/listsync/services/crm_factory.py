"""
CRM Provider Factory.
Builds the configured CRM integration.
"""

import logging
from functools import lru_cache
from typing import Optional

from listsync.core.config import get_settings
from listsync.core.interfaces.crm import CRMProvider

logger = logging.getLogger(__name__)


class CRMProviderError(Exception):
    """Raised when CRM provider cannot be loaded or initialized."""
    pass


@lru_cache
def get_crm_provider() -> Optional[CRMProvider]:
    """
    Factory function to get the configured CRM provider.

    Reads ACTIVE_CRM_PROVIDER from settings and loads the corresponding
    provider implementation.

    Returns:
        Configured CRM provider instance, or None if no provider is active

    Raises:
        CRMProviderError: If provider is configured but cannot be loaded
    """
    settings = get_settings()

    active_provider = settings.active_crm_provider.lower() if settings.active_crm_provider else None

    if not active_provider or active_provider == "none":
        logger.info("ℹ️ No CRM provider configured")
        return None

    logger.info(f"🔌 Loading CRM provider: {active_provider}")

    if active_provider == "hubspot":
        return _load_hubspot_provider()

    raise CRMProviderError(
        f"Unknown CRM provider: {active_provider}. "
        f"Supported providers: hubspot"
    )


def _load_hubspot_provider() -> CRMProvider:
    """
    Loads and initializes the HubSpot provider.

    Credentials are resolved per call (static token or stored OAuth tokens),
    so a missing connection is reported when a sync starts, not here.
    """
    settings = get_settings()

    # Import here to avoid loading integration code if not needed
    from listsync.db.session import get_session_maker
    from listsync.integrations.hubspot import HubSpotClient, HubSpotCRMProvider, HubSpotTokenManager
    from listsync.services.cache import TTLCache
    from listsync.services.integration_store import IntegrationStore

    if settings.hubspot_access_token:
        logger.info("🔑 Using static HUBSPOT_ACCESS_TOKEN")
    elif not (settings.hubspot_client_id and settings.hubspot_client_secret):
        logger.warning("⚠️ HUBSPOT_CLIENT_ID/HUBSPOT_CLIENT_SECRET not set, token refresh will fail")

    token_manager = HubSpotTokenManager(
        store=IntegrationStore(get_session_maker()),
        account_id=settings.default_account_id,
        client_id=settings.hubspot_client_id,
        client_secret=settings.hubspot_client_secret,
        token_url=settings.hubspot_token_url,
        static_token=settings.hubspot_access_token,
        cache=TTLCache(ttl_seconds=settings.token_cache_ttl_seconds, name="hubspot-tokens"),
    )
    client = HubSpotClient(
        token_source=token_manager.get_valid_access_token,
        api_base_url=settings.hubspot_api_base_url,
    )

    logger.info("✅ Initializing HubSpot CRM provider")
    return HubSpotCRMProvider(
        client=client,
        token_manager=token_manager,
        company_cache=TTLCache(
            ttl_seconds=settings.company_search_cache_ttl_seconds,
            name="hubspot-companies",
        ),
    )


def clear_crm_provider_cache() -> None:
    """
    Clears the cached CRM provider instance.

    Useful for testing or when credentials are updated at runtime.
    """
    logger.info("🔄 Clearing CRM provider cache")
    get_crm_provider.cache_clear()


def is_crm_available() -> bool:
    """
    Quick check if a CRM provider is configured.

    Returns:
        True if a CRM provider is active, False otherwise
    """
    try:
        return get_crm_provider() is not None
    except CRMProviderError as e:
        logger.error(f"❌ CRM availability check failed: {e}")
        return False
