"""
HubSpot OAuth token management.

Lookup order: static HUBSPOT_ACCESS_TOKEN, then stored OAuth tokens (cached
briefly, loaded from account_integrations on a miss). Tokens within five
minutes of expiry are refreshed through the OAuth token endpoint. When a
refresh fails the durable store is read again, since the user may have
reconnected in the meantime.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from listsync.integrations.hubspot.client import HubSpotAuthError
from listsync.services.cache import TTLCache
from listsync.services.integration_store import IntegrationStore, StoredTokens
from listsync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

PROVIDER_KEY = "hubspot"

# Refresh tokens this close to expiry
REFRESH_BUFFER = timedelta(minutes=5)


class HubSpotTokenManager:
    """Hands out valid HubSpot access tokens for one account."""

    def __init__(
        self,
        store: IntegrationStore,
        account_id: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: str = "https://api.hubapi.com/oauth/v1/token",
        static_token: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.static_token = static_token
        self.cache = cache or TTLCache(ttl_seconds=300.0, name="hubspot-tokens")
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._now = now

    @property
    def _cache_key(self) -> str:
        return f"tokens:{PROVIDER_KEY}:{self.account_id}"

    async def _load_tokens(self) -> Optional[StoredTokens]:
        return await self.cache.get_or_load(
            self._cache_key,
            lambda: self.store.load_tokens(self.account_id, PROVIDER_KEY),
        )

    def _needs_refresh(self, tokens: StoredTokens) -> bool:
        if tokens.expires_at is None:
            return False
        return self._now() > tokens.expires_at - REFRESH_BUFFER

    def invalidate(self) -> None:
        """Forget cached tokens; the next lookup reads the database."""
        self.cache.invalidate(self._cache_key)

    async def refresh_tokens(self, refresh_token: str) -> StoredTokens:
        """
        Exchanges a refresh token for a new token pair.

        Raises:
            HubSpotAuthError: If the token endpoint rejects the request
        """
        logger.info("🔄 Refreshing HubSpot access token...")

        if not refresh_token:
            raise HubSpotAuthError("No HubSpot refresh token stored")

        try:
            response = await self._client.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self.client_id or "",
                    "client_secret": self.client_secret or "",
                    "refresh_token": refresh_token,
                },
            )
        except httpx.RequestError as e:
            raise HubSpotAuthError(f"Network error during token refresh: {e}") from e

        if response.status_code != 200:
            raise HubSpotAuthError(
                f"Token refresh failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        data = response.json()
        if "access_token" not in data:
            raise HubSpotAuthError(f"No access_token in response: {data}")

        expires_in = int(data.get("expires_in", 1800))
        tokens = StoredTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_at=self._now() + timedelta(seconds=expires_in),
        )

        logger.info(f"✅ HubSpot access token refreshed (valid for {expires_in}s)")
        return tokens

    async def get_valid_access_token(self, force_refresh: bool = False) -> Optional[str]:
        """
        Returns a valid access token, or None if no credential can be obtained.
        """
        if self.static_token:
            return self.static_token

        tokens = await self._load_tokens()
        if tokens is None:
            logger.warning(f"⚠️ No HubSpot tokens stored for account {self.account_id}")
            return None

        if not force_refresh and not self._needs_refresh(tokens):
            return tokens.access_token

        try:
            refreshed = await self.refresh_tokens(tokens.refresh_token)
        except HubSpotAuthError as e:
            logger.error(f"❌ Token refresh failed, re-reading stored tokens: {e}")
            self.invalidate()
            latest = await self._load_tokens()
            if latest is not None and latest.access_token != tokens.access_token:
                logger.info("🔑 Using re-authorised HubSpot token from database")
                return latest.access_token
            return None

        await self.store.save_tokens(
            self.account_id,
            PROVIDER_KEY,
            StoredTokens(
                access_token=refreshed.access_token,
                refresh_token=refreshed.refresh_token,
                expires_at=refreshed.expires_at,
                portal_id=tokens.portal_id,
            ),
        )
        self.cache.set(self._cache_key, refreshed)
        return refreshed.access_token

    async def close(self) -> None:
        await self._client.aclose()
