"""
Upload pipeline models - sessions and their temporarily stored rows.

An UploadSession is one bulk upload with its own lifecycle and retention
clock. UploadRow records hold the row-level PII until it is synced to the
CRM or purged when the session expires.
"""

import enum
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from listsync.db.base import Base
from listsync.utils.timeutils import ensure_utc, utcnow


class SessionStatus(str, enum.Enum):
    """Lifecycle status of an upload session."""

    UPLOADED = "uploaded"
    ENRICHED = "enriched"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class RowStatus(str, enum.Enum):
    """Processing status of a single uploaded row."""

    PENDING = "pending"
    VALIDATED = "validated"
    ENRICHED = "enriched"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


def _enum_values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


class UploadSession(Base):
    """
    SQLAlchemy model for upload sessions.

    Tracks:
    - Upload metadata (file name, optional raw bytes for re-download)
    - Per-stage counters
    - Retry bookkeeping
    - The retention deadline (expires_at), fixed at creation
    """

    __tablename__ = "upload_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    file_name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Original file name of the upload",
    )

    status: Mapped[SessionStatus] = mapped_column(
        Enum(
            SessionStatus,
            name="upload_session_status",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=SessionStatus.UPLOADED,
        index=True,
    )

    # Counters
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enriched_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    field_mappings: Mapped[Dict[str, str]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Source column -> CRM target field",
    )
    enrichment_config_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Original upload, kept for re-download until purge
    file_content: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    rows: Mapped[List["UploadRow"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_upload_sessions_account_created", "account_id", "created_at"),
    )

    @validates("expires_at")
    def _validate_expires_at(self, key: str, value: datetime) -> datetime:
        current = self.__dict__.get("expires_at")
        if current is not None and ensure_utc(current) != ensure_utc(value):
            raise ValueError("expires_at is fixed at creation and cannot be changed")
        return value

    def is_past_retention(self, now: datetime | None = None) -> bool:
        """True once the retention window has elapsed or the data was purged."""
        if self.status == SessionStatus.EXPIRED:
            return True
        return ensure_utc(self.expires_at) < (now or utcnow())

    def has_live_sync(self, stale_after_seconds: float, now: datetime | None = None) -> bool:
        """
        True while a 'syncing' session is still being written by its run.

        Every synced row bumps updated_at, so a run that stopped writing for
        longer than `stale_after_seconds` is treated as dead.
        """
        if self.status != SessionStatus.SYNCING:
            return False
        cutoff = (now or utcnow()) - timedelta(seconds=stale_after_seconds)
        return ensure_utc(self.updated_at) > cutoff

    def __repr__(self) -> str:
        return f"<UploadSession(id={self.id}, file_name='{self.file_name}', status={self.status.value})>"


class UploadRow(Base):
    """One uploaded record; the unit of retry."""

    __tablename__ = "upload_rows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("upload_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    row_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position in the upload; defines processing and export order",
    )

    raw_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    enriched_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[RowStatus] = mapped_column(
        Enum(
            RowStatus,
            name="upload_row_status",
            values_callable=_enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=RowStatus.PENDING,
    )

    crm_contact_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    crm_company_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    session: Mapped[UploadSession] = relationship(back_populates="rows")

    __table_args__ = (
        UniqueConstraint("session_id", "row_index", name="uq_upload_rows_session_index"),
        Index("ix_upload_rows_session_status", "session_id", "status"),
    )

    def merged_data(self) -> Dict[str, Any]:
        """Raw values overlaid with enrichment output."""
        return {**(self.raw_data or {}), **(self.enriched_data or {})}

    def __repr__(self) -> str:
        return f"<UploadRow(session_id={self.session_id}, row_index={self.row_index}, status={self.status.value})>"
