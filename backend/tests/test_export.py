"""
CSV export tests.
"""

from datetime import timedelta

import pytest

from listsync.models.upload import RowStatus, SessionStatus
from listsync.services.pipeline.errors import NoRowsForFilterError, SessionExpiredError
from listsync.services.pipeline.export import (
    ERROR_COLUMN,
    export_file_name,
    export_session_csv,
    read_csv_rows,
    rows_to_csv,
)
from listsync.services.pipeline.retention import RetentionReaper
from listsync.utils.timeutils import utcnow


async def _session_with_one_failed_row(store):
    upload = await store.create_session(
        "acct-1",
        "leads.xlsx",
        [
            {"Email": "a@acme.io", "Name": "Ana"},
            {"Email": "broken", "Name": "Ben"},
            {"Email": "c@acme.io", "Name": "Cy"},
        ],
        field_mappings={"Email": "email"},
    )
    rows = await store.fetch_rows_page(upload.id, [RowStatus.PENDING])
    await store.update_row_status(rows[1].id, RowStatus.PENDING, RowStatus.FAILED, error_message="Invalid email address: broken")
    return upload


class TestFilters:

    @pytest.mark.asyncio
    async def test_flagged_export_has_only_failed_rows_with_error_column(self, store):
        """
        SCENARIO: 3 rows, row 1 failed with an error message; filter=flagged.

        EXPECTED: Exactly one data row, and its _error column holds the message.
        """
        upload = await _session_with_one_failed_row(store)

        export = await export_session_csv(store, upload.id, "flagged")

        records = read_csv_rows(export.content)
        assert len(records) == 1
        assert records[0]["Name"] == "Ben"
        assert records[0][ERROR_COLUMN] == "Invalid email address: broken"
        assert export.file_name == "leads_flagged_export.csv"

    @pytest.mark.asyncio
    async def test_clean_export_excludes_failed_rows(self, store):
        upload = await _session_with_one_failed_row(store)

        export = await export_session_csv(store, upload.id, "clean")

        records = read_csv_rows(export.content)
        assert [r["Name"] for r in records] == ["Ana", "Cy"]
        assert ERROR_COLUMN not in records[0]

    @pytest.mark.asyncio
    async def test_all_export_keeps_row_order(self, store):
        upload = await _session_with_one_failed_row(store)

        export = await export_session_csv(store, upload.id, "all")

        assert [r["Name"] for r in read_csv_rows(export.content)] == ["Ana", "Ben", "Cy"]
        assert export.row_count == 3
        assert export.file_name == "leads_export.csv"

    @pytest.mark.asyncio
    async def test_filter_without_rows_is_not_found(self, store):
        upload = await store.create_session("acct-1", "leads.csv", [{"Email": "a@acme.io"}])

        with pytest.raises(NoRowsForFilterError) as exc_info:
            await export_session_csv(store, upload.id, "flagged")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_filter_is_rejected(self, store):
        upload = await store.create_session("acct-1", "leads.csv", [{"Email": "a@acme.io"}])

        with pytest.raises(ValueError):
            await export_session_csv(store, upload.id, "everything")


class TestRoundTrip:

    @pytest.mark.asyncio
    async def test_raw_keys_survive_export_and_reimport(self, store):
        """
        SCENARIO: A row is enriched, exported, and the CSV is uploaded again.

        EXPECTED: Every original key not overwritten by enrichment comes back
        with its value; enrichment output is added.
        """
        raw = {"Email": "ana@acme.io", "Company": "Acme", "City": "Berlin"}
        upload = await store.create_session("acct-1", "leads.csv", [raw])
        row = (await store.fetch_rows_page(upload.id, [RowStatus.PENDING]))[0]
        await store.update_row_status(row.id, RowStatus.PENDING, RowStatus.VALIDATED)
        await store.update_row_status(
            row.id, RowStatus.VALIDATED, RowStatus.ENRICHED,
            enriched_data={"domain": "acme.io", "City": "Berlin-Mitte"},
        )

        export = await export_session_csv(store, upload.id, "all")
        reimported = await store.create_session("acct-1", export.file_name, read_csv_rows(export.content))
        new_row = (await store.fetch_rows_page(reimported.id, [RowStatus.PENDING]))[0]

        assert new_row.raw_data["Email"] == "ana@acme.io"
        assert new_row.raw_data["Company"] == "Acme"
        assert new_row.raw_data["domain"] == "acme.io"
        assert new_row.raw_data["City"] == "Berlin-Mitte"


class TestExpiry:

    @pytest.mark.asyncio
    async def test_export_after_purge_is_gone(self, store, leases):
        upload = await store.create_session("acct-1", "leads.csv", [{"Email": "a@acme.io"}], retention_days=1)
        await RetentionReaper(store, leases=leases).purge_expired(now=utcnow() + timedelta(days=2))

        with pytest.raises(SessionExpiredError) as exc_info:
            await export_session_csv(store, upload.id, "all")
        assert exc_info.value.status_code == 410
        assert (await store.get_session(upload.id)).status == SessionStatus.EXPIRED


class TestCsvHelpers:

    def test_columns_are_union_in_first_seen_order(self):
        content = rows_to_csv([{"a": 1, "b": 2}, {"b": 3, "c": None}])

        assert content.splitlines() == ["a,b,c", "1,2,", ",3,"]

    def test_file_name_without_extension(self):
        assert export_file_name("contacts", "clean") == "contacts_clean_export.csv"
        assert export_file_name(None, "all") == "export_export.csv"
