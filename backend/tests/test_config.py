"""
Settings and CRM factory tests.

Settings are read from the environment through pydantic-settings and
cached; the factory builds the HubSpot provider from those settings.
"""

import pytest

from listsync.core.config import DEFAULT_ACCOUNT_ID, clear_settings_cache, get_settings
from listsync.db.session import get_async_engine, get_session_maker
from listsync.integrations.hubspot import HubSpotCRMProvider
from listsync.services.crm_factory import (
    CRMProviderError,
    clear_crm_provider_cache,
    get_crm_provider,
    is_crm_available,
)

PIPELINE_ENV = [
    "RETENTION_DAYS",
    "SYNC_PAGE_SIZE",
    "ACTIVE_CRM_PROVIDER",
    "HUBSPOT_ACCESS_TOKEN",
    "DATABASE_URL",
    "CORS_ORIGINS",
    "COMPANY_SEARCH_CACHE_TTL_SECONDS",
]


@pytest.fixture
def env(monkeypatch):
    """Isolated environment with fresh settings and factory caches."""
    for name in PIPELINE_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite://")
    clear_settings_cache()
    clear_crm_provider_cache()
    get_async_engine.cache_clear()
    get_session_maker.cache_clear()
    yield monkeypatch
    clear_settings_cache()
    clear_crm_provider_cache()
    get_async_engine.cache_clear()
    get_session_maker.cache_clear()


# =============================================================================
# Settings
# =============================================================================


class TestSettings:
    def test_pipeline_defaults(self, env):
        settings = get_settings()

        assert settings.retention_days == 15
        assert settings.session_max_retries == 3
        assert settings.sync_page_size == 50
        assert settings.sync_row_delay_seconds == 0.2
        assert settings.retention_sweep_interval_seconds == 3600
        assert settings.default_account_id == DEFAULT_ACCOUNT_ID

    def test_environment_overrides_after_cache_clear(self, env):
        assert get_settings().retention_days == 15

        env.setenv("RETENTION_DAYS", "30")
        # Still cached
        assert get_settings().retention_days == 15

        clear_settings_cache()
        assert get_settings().retention_days == 30

    def test_postgres_url_gets_async_driver(self, env):
        env.setenv("DATABASE_URL", "postgresql://u:p@db:5432/listsync")
        clear_settings_cache()

        assert get_settings().async_database_url == "postgresql+psycopg://u:p@db:5432/listsync"

    def test_cors_origins_are_split(self, env):
        env.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
        clear_settings_cache()

        assert get_settings().cors_origins_list == ["http://a.test", "http://b.test"]


# =============================================================================
# CRM factory
# =============================================================================


class TestCRMFactory:
    def test_builds_hubspot_provider_with_configured_cache(self, env):
        env.setenv("HUBSPOT_ACCESS_TOKEN", "static-token")
        env.setenv("COMPANY_SEARCH_CACHE_TTL_SECONDS", "15")
        clear_settings_cache()

        provider = get_crm_provider()

        assert isinstance(provider, HubSpotCRMProvider)
        assert provider.get_provider_name() == "HubSpot"
        assert provider.token_manager.static_token == "static-token"
        assert provider.company_cache.stats() == {"name": "hubspot-companies", "size": 0, "ttl_seconds": 15.0}
        assert get_crm_provider() is provider
        assert is_crm_available() is True

    def test_none_disables_crm(self, env):
        env.setenv("ACTIVE_CRM_PROVIDER", "none")
        clear_settings_cache()

        assert get_crm_provider() is None
        assert is_crm_available() is False

    def test_unknown_provider_raises(self, env):
        env.setenv("ACTIVE_CRM_PROVIDER", "salesforce")
        clear_settings_cache()

        with pytest.raises(CRMProviderError, match="Unknown CRM provider"):
            get_crm_provider()
        assert is_crm_available() is False
