"""
CSV export of stored session rows.

Each exported record is the row's raw data overlaid with its enrichment
output. Columns are the union of all keys in order of first appearance.
Flagged exports carry the row's error in an `_error` column.
"""

import csv
import io
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List

from listsync.services.pipeline.errors import NoRowsForFilterError, SessionExpiredError
from listsync.services.pipeline.session_store import EXPORT_FILTERS, SessionStore
from listsync.services.pipeline_log import LogStep, pipeline_log

logger = logging.getLogger(__name__)

ERROR_COLUMN = "_error"

_FILTER_SUFFIX = {"all": "", "clean": "_clean", "flagged": "_flagged"}


@dataclass
class CsvExport:
    file_name: str
    content: str
    row_count: int


def export_file_name(source_name: str | None, export_filter: str) -> str:
    """'leads.xlsx' + flagged -> 'leads_flagged_export.csv'."""
    base, _ = os.path.splitext(source_name or "export")
    return f"{base or 'export'}{_FILTER_SUFFIX[export_filter]}_export.csv"


def rows_to_csv(records: List[Dict[str, Any]]) -> str:
    columns: Dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), restval="", lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow({key: "" if value is None else value for key, value in record.items()})
    return buffer.getvalue()


def read_csv_rows(content: str) -> List[Dict[str, str]]:
    """Parse exported CSV back into row dictionaries."""
    return [dict(record) for record in csv.DictReader(io.StringIO(content))]


async def export_session_csv(store: SessionStore, session_id, export_filter: str = "all") -> CsvExport:
    """
    Build the CSV export of a session.

    Raises:
        SessionNotFoundError: Unknown session
        SessionExpiredError: Session past its retention window
        NoRowsForFilterError: The filter matches no stored rows
        ValueError: Unknown filter
    """
    if export_filter not in EXPORT_FILTERS:
        raise ValueError(f"filter must be one of {', '.join(EXPORT_FILTERS)}")

    session = await store.get_session(session_id)
    if session.is_past_retention():
        raise SessionExpiredError(session.id)

    rows = await store.list_rows_for_export(session.id, export_filter)
    if not rows:
        raise NoRowsForFilterError(export_filter)

    records = []
    for row in rows:
        record = row.merged_data()
        if export_filter == "flagged" and row.error_message:
            record[ERROR_COLUMN] = row.error_message
        records.append(record)

    file_name = export_file_name(session.file_name, export_filter)
    pipeline_log.log_info(LogStep.EXPORT, f"Exported {len(records)} rows ({export_filter}) as {file_name}", session.id)
    return CsvExport(file_name=file_name, content=rows_to_csv(records), row_count=len(records))
