"""
Session Store Adapter.

CRUD over upload sessions and rows. Every method runs in its own short
transaction and commits before returning, so a status written here is
durable by the time the caller acts on it.

Status changes are compare-and-set updates guarded by the transition
tables; counter changes are atomic SQL increments.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listsync.core.config import get_settings
from listsync.models.integration import EnrichmentConfig
from listsync.models.upload import RowStatus, SessionStatus, UploadRow, UploadSession
from listsync.services.pipeline.errors import (
    ConcurrentModificationError,
    RowNotFoundError,
    SessionNotFoundError,
)
from listsync.services.pipeline.state_machine import (
    RETENTION_EXEMPT_STATUSES,
    check_row_transition,
    check_session_transition,
)
from listsync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Rows inserted per statement when a session is created
ROW_INSERT_BATCH_SIZE = 500

# Failed rows listed in the session detail view
FAILED_ROW_DETAIL_LIMIT = 100

EXPORT_FILTERS = ("all", "clean", "flagged")

_SESSION_COUNTERS = frozenset(
    {"processed_rows", "enriched_rows", "synced_rows", "failed_rows"}
)


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise SessionNotFoundError(value)


class SessionStore:
    """Persistence for upload sessions and rows."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        account_id: str,
        file_name: str,
        rows: Sequence[Dict[str, Any]],
        field_mappings: Optional[Dict[str, str]] = None,
        enrichment_config_ids: Optional[List[str]] = None,
        file_content: Optional[bytes] = None,
        file_type: Optional[str] = None,
        retention_days: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> UploadSession:
        """
        Create a session and its rows (status pending) in one transaction.

        Row indexes follow the order of `rows`. expires_at is set here and
        never written again.
        """
        settings = get_settings()
        created_at = utcnow()
        retention = retention_days if retention_days is not None else settings.retention_days

        upload = UploadSession(
            account_id=account_id,
            file_name=file_name,
            status=SessionStatus.UPLOADED,
            total_rows=len(rows),
            field_mappings=dict(field_mappings or {}),
            enrichment_config_ids=[str(config_id) for config_id in (enrichment_config_ids or [])],
            file_content=file_content,
            file_type=file_type,
            file_size=len(file_content) if file_content is not None else None,
            max_retries=max_retries if max_retries is not None else settings.session_max_retries,
            created_at=created_at,
            updated_at=created_at,
            expires_at=created_at + timedelta(days=retention),
        )

        async with self._session_maker() as db:
            db.add(upload)
            await db.flush()

            for start in range(0, len(rows), ROW_INSERT_BATCH_SIZE):
                batch = rows[start:start + ROW_INSERT_BATCH_SIZE]
                db.add_all(
                    UploadRow(
                        session_id=upload.id,
                        row_index=start + offset,
                        raw_data=dict(raw),
                        enriched_data={},
                        status=RowStatus.PENDING,
                    )
                    for offset, raw in enumerate(batch)
                )
                await db.flush()

            await db.commit()

        logger.info(f"📥 Created upload session {upload.id} ({file_name}, {len(rows)} rows)")
        return upload

    async def get_session(self, session_id) -> UploadSession:
        """Load a session or raise SessionNotFoundError."""
        sid = _as_uuid(session_id)
        async with self._session_maker() as db:
            upload = await db.get(UploadSession, sid)
        if upload is None:
            raise SessionNotFoundError(session_id)
        return upload

    async def list_sessions(
        self,
        account_id: str,
        status: Optional[SessionStatus] = None,
    ) -> List[UploadSession]:
        """Sessions of an account, newest first."""
        query = (
            select(UploadSession)
            .where(UploadSession.account_id == account_id)
            .order_by(UploadSession.created_at.desc())
        )
        if status is not None:
            query = query.where(UploadSession.status == status)

        async with self._session_maker() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def delete_session(self, session_id) -> None:
        """Delete a session's rows, then the session itself."""
        sid = _as_uuid(session_id)
        async with self._session_maker() as db:
            if await db.get(UploadSession, sid) is None:
                raise SessionNotFoundError(session_id)
            await db.execute(delete(UploadRow).where(UploadRow.session_id == sid))
            await db.execute(delete(UploadSession).where(UploadSession.id == sid))
            await db.commit()

        logger.info(f"🗑️ Deleted upload session {sid}")

    async def transition_session(
        self,
        session_id,
        expected: SessionStatus,
        target: SessionStatus,
        **values: Any,
    ) -> UploadSession:
        """
        Move a session from `expected` to `target` and write `values`.

        The update only applies while the stored status still equals
        `expected`; otherwise ConcurrentModificationError is raised.
        Values may be SQL expressions (e.g. retry_count + 1).
        """
        check_session_transition(expected, target)
        if "expires_at" in values:
            raise ValueError("expires_at is fixed at creation and cannot be changed")

        sid = _as_uuid(session_id)
        async with self._session_maker() as db:
            result = await db.execute(
                update(UploadSession)
                .where(UploadSession.id == sid, UploadSession.status == expected)
                .values(status=target, **values)
            )
            await db.commit()

        if result.rowcount == 0:
            current = await self.get_session(session_id)
            raise ConcurrentModificationError(
                f"Upload session {sid} is '{current.status.value}', expected '{expected.value}'"
            )

        logger.debug(f"Session {sid}: {expected.value} -> {target.value}")
        return await self.get_session(sid)

    async def update_session_fields(self, session_id, **values: Any) -> None:
        """Write non-status fields (messages, counters) of a session."""
        if "status" in values:
            raise ValueError("Use transition_session to change the session status")
        if "expires_at" in values:
            raise ValueError("expires_at is fixed at creation and cannot be changed")

        sid = _as_uuid(session_id)
        async with self._session_maker() as db:
            await db.execute(update(UploadSession).where(UploadSession.id == sid).values(**values))
            await db.commit()

    async def increment_counters(self, session_id, **deltas: int) -> None:
        """Atomically add to session counters, e.g. synced_rows=1."""
        unknown = set(deltas) - _SESSION_COUNTERS
        if unknown:
            raise ValueError(f"Unknown session counters: {sorted(unknown)}")

        sid = _as_uuid(session_id)
        values = {
            name: getattr(UploadSession, name) + delta
            for name, delta in deltas.items()
            if delta
        }
        if not values:
            return

        async with self._session_maker() as db:
            await db.execute(update(UploadSession).where(UploadSession.id == sid).values(**values))
            await db.commit()

    async def find_expired_sessions(self, now: Optional[datetime] = None) -> List[UploadSession]:
        """Sessions past expires_at that are neither expired nor completed."""
        cutoff = now or utcnow()
        query = (
            select(UploadSession)
            .where(
                UploadSession.expires_at < cutoff,
                UploadSession.status.not_in(list(RETENTION_EXEMPT_STATUSES)),
            )
            .order_by(UploadSession.expires_at)
        )
        async with self._session_maker() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    async def get_row(self, row_id) -> UploadRow:
        async with self._session_maker() as db:
            row = await db.get(UploadRow, row_id)
        if row is None:
            raise RowNotFoundError(f"Upload row {row_id} not found")
        return row

    async def fetch_rows_page(
        self,
        session_id,
        statuses: Iterable[RowStatus],
        after_index: int = -1,
        limit: int = 50,
    ) -> List[UploadRow]:
        """
        Next page of rows in `statuses` ordered by row_index.

        Keyset pagination (row_index > after_index) keeps a row that stays
        eligible after processing from being read twice in one pass.
        """
        sid = _as_uuid(session_id)
        query = (
            select(UploadRow)
            .where(
                UploadRow.session_id == sid,
                UploadRow.status.in_(list(statuses)),
                UploadRow.row_index > after_index,
            )
            .order_by(UploadRow.row_index)
            .limit(limit)
        )
        async with self._session_maker() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_rows(self, session_id, statuses: Optional[Iterable[RowStatus]] = None) -> int:
        sid = _as_uuid(session_id)
        query = select(func.count()).select_from(UploadRow).where(UploadRow.session_id == sid)
        if statuses is not None:
            query = query.where(UploadRow.status.in_(list(statuses)))
        async with self._session_maker() as db:
            return (await db.execute(query)).scalar_one()

    async def update_row_status(
        self,
        row_id,
        expected: RowStatus,
        target: RowStatus,
        **values: Any,
    ) -> None:
        """
        Move a row from `expected` to `target` and write `values`.

        Raises ConcurrentModificationError if the stored status is no longer
        `expected`.
        """
        check_row_transition(expected, target)
        async with self._session_maker() as db:
            result = await db.execute(
                update(UploadRow)
                .where(UploadRow.id == row_id, UploadRow.status == expected)
                .values(status=target, **values)
            )
            await db.commit()

        if result.rowcount == 0:
            row = await self.get_row(row_id)
            raise ConcurrentModificationError(
                f"Row {row.row_index} is '{row.status.value}', expected '{expected.value}'"
            )

    async def fail_rows(
        self,
        session_id,
        statuses: Iterable[RowStatus],
        error_message: str,
        after_index: int = -1,
    ) -> List[UploadRow]:
        """
        Mark every row in `statuses` past `after_index` as failed.

        Returns the affected rows (row_index order) with their new state.
        """
        statuses = list(statuses)
        for status in statuses:
            check_row_transition(status, RowStatus.FAILED)

        sid = _as_uuid(session_id)
        async with self._session_maker() as db:
            result = await db.execute(
                select(UploadRow.id)
                .where(
                    UploadRow.session_id == sid,
                    UploadRow.status.in_(statuses),
                    UploadRow.row_index > after_index,
                )
                .order_by(UploadRow.row_index)
            )
            row_ids = list(result.scalars().all())
            if not row_ids:
                return []

            await db.execute(
                update(UploadRow)
                .where(UploadRow.id.in_(row_ids))
                .values(status=RowStatus.FAILED, error_message=error_message)
            )
            await db.commit()

            refreshed = await db.execute(
                select(UploadRow).where(UploadRow.id.in_(row_ids)).order_by(UploadRow.row_index)
            )
            return list(refreshed.scalars().all())

    async def recover_interrupted_rows(self, session_id, error_message: str) -> int:
        """Fail rows left in 'syncing' by a run that never finished."""
        rows = await self.fail_rows(session_id, [RowStatus.SYNCING], error_message)
        if rows:
            logger.warning(f"⚠️ Recovered {len(rows)} interrupted rows in session {session_id}")
        return len(rows)

    async def delete_rows(self, session_id, status: Optional[RowStatus] = None) -> int:
        """Delete a session's rows (optionally only those in `status`)."""
        sid = _as_uuid(session_id)
        statement = delete(UploadRow).where(UploadRow.session_id == sid)
        if status is not None:
            statement = statement.where(UploadRow.status == status)

        async with self._session_maker() as db:
            result = await db.execute(statement)
            await db.commit()
        return result.rowcount or 0

    async def row_status_counts(self, session_id) -> Dict[str, int]:
        """Number of stored rows per status."""
        sid = _as_uuid(session_id)
        async with self._session_maker() as db:
            result = await db.execute(
                select(UploadRow.status, func.count())
                .where(UploadRow.session_id == sid)
                .group_by(UploadRow.status)
            )
            return {status.value: count for status, count in result.all()}

    async def failed_row_details(
        self,
        session_id,
        limit: int = FAILED_ROW_DETAIL_LIMIT,
    ) -> List[UploadRow]:
        return await self.fetch_rows_page(session_id, [RowStatus.FAILED], limit=limit)

    async def list_rows_for_export(self, session_id, export_filter: str = "all") -> List[UploadRow]:
        """
        Rows for CSV export.

        all = every stored row, clean = rows not failed, flagged = failed rows.
        """
        if export_filter not in EXPORT_FILTERS:
            raise ValueError(f"Unknown export filter: {export_filter}")

        sid = _as_uuid(session_id)
        query = select(UploadRow).where(UploadRow.session_id == sid).order_by(UploadRow.row_index)
        if export_filter == "clean":
            query = query.where(UploadRow.status != RowStatus.FAILED)
        elif export_filter == "flagged":
            query = query.where(UploadRow.status == RowStatus.FAILED)

        async with self._session_maker() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Enrichment configs
    # -------------------------------------------------------------------------

    async def get_enrichment_configs(self, config_ids: Iterable[str]) -> List[EnrichmentConfig]:
        """Enabled configs among `config_ids`, in execution order."""
        ids = []
        for config_id in config_ids:
            try:
                ids.append(uuid.UUID(str(config_id)))
            except ValueError:
                logger.warning(f"⚠️ Ignoring malformed enrichment config id: {config_id}")
        if not ids:
            return []

        async with self._session_maker() as db:
            result = await db.execute(
                select(EnrichmentConfig)
                .where(EnrichmentConfig.id.in_(ids), EnrichmentConfig.is_enabled.is_(True))
                .order_by(EnrichmentConfig.execution_order)
            )
            return list(result.scalars().all())


_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get or create the session store singleton."""
    global _session_store
    if _session_store is None:
        from listsync.db.session import get_session_maker

        _session_store = SessionStore(get_session_maker())
    return _session_store
