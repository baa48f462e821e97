"""
Application configuration using Pydantic Settings.
Loads environment variables from .env file.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Account used when a request carries no x-account-id header
DEFAULT_ACCOUNT_ID = "00000000-0000-0000-0000-000000000001"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_env: str = Field(default="development", alias="APP_ENV")
    app_debug: bool = Field(default=False, alias="APP_DEBUG")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    default_account_id: str = Field(default=DEFAULT_ACCOUNT_ID, alias="DEFAULT_ACCOUNT_ID")

    # -------------------------------------------------------------------------
    # CORS
    # -------------------------------------------------------------------------
    cors_origins: str = Field(
        default="http://localhost:5173,http://localhost:3000",
        alias="CORS_ORIGINS",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # -------------------------------------------------------------------------
    # PostgreSQL
    # -------------------------------------------------------------------------
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_db: str = Field(default="listsync", alias="POSTGRES_DB")
    postgres_user: str = Field(default="postgres", alias="POSTGRES_USER")
    postgres_password: str = Field(default="postgres", alias="POSTGRES_PASSWORD")
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    @property
    def async_database_url(self) -> str:
        """Build async database URL for SQLAlchemy."""
        if self.database_url:
            # Ensure we use the async driver
            url = self.database_url
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+psycopg://", 1)
            return url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Upload pipeline
    # -------------------------------------------------------------------------
    retention_days: int = Field(
        default=15,
        alias="RETENTION_DAYS",
        description="Days after upload before row-level PII is purged",
    )
    session_max_retries: int = Field(default=3, alias="SESSION_MAX_RETRIES")
    sync_page_size: int = Field(
        default=50,
        alias="SYNC_PAGE_SIZE",
        description="Rows fetched per page; also the progress/recovery checkpoint",
    )
    sync_row_delay_seconds: float = Field(
        default=0.2,
        alias="SYNC_ROW_DELAY_SECONDS",
        description="Pause after every synced row (CRM rate limit)",
    )
    sync_stale_after_seconds: float = Field(
        default=900.0,
        alias="SYNC_STALE_AFTER_SECONDS",
        description="A syncing session with no writes for this long is treated as interrupted",
    )
    enrichment_delay_seconds: float = Field(default=0.5, alias="ENRICHMENT_DELAY_SECONDS")
    retention_sweep_interval_seconds: int = Field(
        default=3600,
        alias="RETENTION_SWEEP_INTERVAL_SECONDS",
        description="Interval of the background purge loop (0 disables it)",
    )

    # -------------------------------------------------------------------------
    # CRM Integration (HubSpot)
    # -------------------------------------------------------------------------
    active_crm_provider: str | None = Field(
        default="hubspot",
        alias="ACTIVE_CRM_PROVIDER",
        description="Active CRM provider: 'hubspot' or 'none'",
    )
    hubspot_client_id: str | None = Field(
        default=None,
        alias="HUBSPOT_CLIENT_ID",
        description="HubSpot OAuth2 Client ID",
    )
    hubspot_client_secret: str | None = Field(
        default=None,
        alias="HUBSPOT_CLIENT_SECRET",
        description="HubSpot OAuth2 Client Secret",
    )
    hubspot_access_token: str | None = Field(
        default=None,
        alias="HUBSPOT_ACCESS_TOKEN",
        description="Static private-app token; bypasses stored OAuth tokens when set",
    )
    hubspot_api_base_url: str = Field(
        default="https://api.hubapi.com",
        alias="HUBSPOT_API_BASE_URL",
    )
    hubspot_token_url: str = Field(
        default="https://api.hubapi.com/oauth/v1/token",
        alias="HUBSPOT_TOKEN_URL",
    )
    company_search_cache_ttl_seconds: float = Field(
        default=60.0,
        alias="COMPANY_SEARCH_CACHE_TTL_SECONDS",
    )
    token_cache_ttl_seconds: float = Field(default=300.0, alias="TOKEN_CACHE_TTL_SECONDS")

    # -------------------------------------------------------------------------
    # Enrichment (SERP search)
    # -------------------------------------------------------------------------
    serp_api_key: str | None = Field(default=None, alias="SERP_API_KEY")
    serp_api_url: str = Field(
        default="https://serpapi.com/search.json",
        alias="SERP_API_URL",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Note: Settings are cached! If you change .env, restart the server.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Call this if you need to reload settings."""
    get_settings.cache_clear()
