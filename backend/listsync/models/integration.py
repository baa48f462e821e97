"""
Integration models - stored CRM credentials and enrichment definitions.
"""

import uuid
from datetime import datetime
from typing import List

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from listsync.db.base import Base
from listsync.utils.timeutils import utcnow


class AccountIntegration(Base):
    """OAuth tokens of a connected CRM, one record per (account, provider)."""

    __tablename__ = "account_integrations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    portal_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    connected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("account_id", "provider", name="uq_account_integrations_provider"),
    )

    def __repr__(self) -> str:
        return f"<AccountIntegration(account_id={self.account_id}, provider='{self.provider}')>"


class EnrichmentConfig(Base):
    """
    An enrichment step selectable per upload session.

    input_fields name the row values used to build the lookup query;
    the result is written to output_field of the row's enriched data.
    """

    __tablename__ = "enrichment_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    service: Mapped[str] = mapped_column(String(50), nullable=False, default="serp")
    input_fields: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    output_field: Mapped[str] = mapped_column(String(255), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    execution_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<EnrichmentConfig(id={self.id}, name='{self.name}', output_field='{self.output_field}')>"
