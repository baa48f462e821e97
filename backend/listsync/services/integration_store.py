"""
Durable storage of CRM OAuth tokens (account_integrations table).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listsync.models.integration import AccountIntegration
from listsync.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    portal_id: Optional[str] = None


class IntegrationStore:
    """Loads and saves per-account CRM credentials."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def load_tokens(self, account_id: str, provider: str) -> Optional[StoredTokens]:
        """Active tokens of an account, or None if not connected."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(AccountIntegration).where(
                    AccountIntegration.account_id == account_id,
                    AccountIntegration.provider == provider,
                    AccountIntegration.is_active.is_(True),
                )
            )
            integration = result.scalar_one_or_none()

        if integration is None or not integration.access_token:
            return None

        return StoredTokens(
            access_token=integration.access_token,
            refresh_token=integration.refresh_token,
            expires_at=ensure_utc(integration.token_expires_at) if integration.token_expires_at else None,
            portal_id=integration.portal_id,
        )

    async def save_tokens(self, account_id: str, provider: str, tokens: StoredTokens) -> None:
        """Insert or update the account's tokens and mark the integration active."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(AccountIntegration).where(
                    AccountIntegration.account_id == account_id,
                    AccountIntegration.provider == provider,
                )
            )
            integration = result.scalar_one_or_none()

            if integration is None:
                integration = AccountIntegration(account_id=account_id, provider=provider)
                db.add(integration)

            integration.is_active = True
            integration.access_token = tokens.access_token
            integration.refresh_token = tokens.refresh_token
            integration.token_expires_at = tokens.expires_at
            integration.updated_at = utcnow()
            if tokens.portal_id:
                integration.portal_id = tokens.portal_id

            await db.commit()

        logger.info(f"🔑 Saved {provider} tokens for account {account_id}")
