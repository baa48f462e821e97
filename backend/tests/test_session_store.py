"""
Session store tests against in-memory SQLite.
"""

from datetime import timedelta

import pytest

from listsync.models.upload import RowStatus, SessionStatus, UploadSession
from listsync.services.pipeline.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from listsync.utils.timeutils import ensure_utc

from conftest import make_rows


class TestCreateSession:

    @pytest.mark.asyncio
    async def test_rows_are_stored_pending_in_upload_order(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(3))

        assert upload.status == SessionStatus.UPLOADED
        assert upload.total_rows == 3
        rows = await store.fetch_rows_page(upload.id, [RowStatus.PENDING])
        assert [row.row_index for row in rows] == [0, 1, 2]
        assert rows[1].raw_data == {"Email": "user1@example.com", "First Name": "User1"}

    @pytest.mark.asyncio
    async def test_expires_at_is_created_at_plus_retention(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(1), retention_days=15)

        delta = ensure_utc(upload.expires_at) - ensure_utc(upload.created_at)
        assert delta == timedelta(days=15)

    @pytest.mark.asyncio
    async def test_file_content_size_is_recorded(self, store):
        upload = await store.create_session(
            "acct-1", "leads.csv", make_rows(1), file_content=b"a,b\n1,2\n", file_type="text/csv",
        )

        loaded = await store.get_session(upload.id)
        assert loaded.file_content == b"a,b\n1,2\n"
        assert loaded.file_size == 8


class TestLookups:

    @pytest.mark.asyncio
    async def test_unknown_session_raises_not_found(self, store):
        with pytest.raises(SessionNotFoundError):
            await store.get_session("00000000-0000-0000-0000-00000000beef")

    @pytest.mark.asyncio
    async def test_malformed_id_raises_not_found(self, store):
        with pytest.raises(SessionNotFoundError):
            await store.get_session("not-a-uuid")

    @pytest.mark.asyncio
    async def test_list_sessions_is_scoped_by_account(self, store):
        await store.create_session("acct-1", "a.csv", make_rows(1))
        await store.create_session("acct-1", "b.csv", make_rows(1))
        await store.create_session("acct-2", "c.csv", make_rows(1))

        sessions = await store.list_sessions("acct-1")

        assert sorted(s.file_name for s in sessions) == ["a.csv", "b.csv"]

    @pytest.mark.asyncio
    async def test_row_status_counts_sum_to_stored_rows(self, store, create_enriched_session):
        upload = await create_enriched_session(6)
        rows = await store.fetch_rows_page(upload.id, [RowStatus.ENRICHED], limit=2)
        await store.fail_rows(upload.id, [RowStatus.ENRICHED], "bad", after_index=3)
        await store.update_row_status(rows[0].id, RowStatus.ENRICHED, RowStatus.SYNCING)

        counts = await store.row_status_counts(upload.id)

        assert counts == {"enriched": 3, "failed": 2, "syncing": 1}
        assert sum(counts.values()) == await store.count_rows(upload.id)


class TestStatusWrites:

    @pytest.mark.asyncio
    async def test_transition_is_compare_and_set(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(1))
        await store.transition_session(upload.id, SessionStatus.UPLOADED, SessionStatus.ENRICHED)

        with pytest.raises(ConcurrentModificationError):
            await store.transition_session(upload.id, SessionStatus.UPLOADED, SessionStatus.ENRICHED)

    @pytest.mark.asyncio
    async def test_transition_outside_table_is_rejected(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(1))

        with pytest.raises(InvalidTransitionError):
            await store.transition_session(upload.id, SessionStatus.UPLOADED, SessionStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_expires_at_cannot_be_rewritten(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(1))

        with pytest.raises(ValueError):
            await store.update_session_fields(upload.id, expires_at=upload.expires_at + timedelta(days=1))
        with pytest.raises(ValueError):
            upload.expires_at = upload.expires_at + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_counters_increment_atomically(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(1))

        await store.increment_counters(upload.id, synced_rows=1, processed_rows=1)
        await store.increment_counters(upload.id, synced_rows=2)

        loaded = await store.get_session(upload.id)
        assert loaded.synced_rows == 3
        assert loaded.processed_rows == 1

    @pytest.mark.asyncio
    async def test_unknown_counter_is_rejected(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(1))

        with pytest.raises(ValueError):
            await store.increment_counters(upload.id, total_rows=1)

    @pytest.mark.asyncio
    async def test_transition_accepts_sql_expressions(self, store, create_enriched_session):
        upload = await create_enriched_session(1)
        await store.transition_session(upload.id, SessionStatus.ENRICHED, SessionStatus.SYNCING)
        await store.transition_session(upload.id, SessionStatus.SYNCING, SessionStatus.FAILED)

        updated = await store.transition_session(
            upload.id,
            SessionStatus.FAILED,
            SessionStatus.SYNCING,
            retry_count=UploadSession.retry_count + 1,
        )

        assert updated.retry_count == 1


class TestDeletion:

    @pytest.mark.asyncio
    async def test_delete_session_removes_rows(self, store):
        upload = await store.create_session("acct-1", "leads.csv", make_rows(4))

        await store.delete_session(upload.id)

        assert await store.count_rows(upload.id) == 0
        with pytest.raises(SessionNotFoundError):
            await store.get_session(upload.id)

    @pytest.mark.asyncio
    async def test_delete_rows_by_status(self, store, create_enriched_session):
        upload = await create_enriched_session(4)
        await store.fail_rows(upload.id, [RowStatus.ENRICHED], "bad", after_index=1)

        deleted = await store.delete_rows(upload.id, RowStatus.FAILED)

        assert deleted == 2
        assert await store.row_status_counts(upload.id) == {"enriched": 2}
