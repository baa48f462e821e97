"""
Import Pipeline API Endpoints.

Upload sessions: create, inspect, enrich, sync (streamed as NDJSON),
export, download the original file, and purge expired data.
"""

import asyncio
import base64
import binascii
import contextlib
import logging
from datetime import datetime
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from listsync.api.dependencies import (
    get_account_id,
    get_batch_runner,
    get_enrichment_runner,
    get_leases,
    get_retention_reaper,
    get_store,
)
from listsync.core.config import get_settings
from listsync.models.upload import RowStatus, SessionStatus, UploadRow, UploadSession
from listsync.services.pipeline.batch_runner import BatchRunner, SyncRun
from listsync.services.pipeline.enrichment_runner import EnrichmentRunner
from listsync.services.pipeline.errors import (
    FileContentMissingError,
    PipelineError,
    SessionExpiredError,
    SessionNotFoundError,
    SyncAlreadyRunningError,
)
from listsync.services.pipeline.export import export_session_csv
from listsync.services.pipeline.leases import SessionLeaseRegistry
from listsync.services.pipeline.progress import ProgressStreamer
from listsync.services.pipeline.retention import RetentionReaper
from listsync.services.pipeline.session_store import SessionStore
from listsync.services.pipeline_log import LogStep, pipeline_log
from listsync.utils.timeutils import ensure_utc

router = APIRouter(prefix="/pipeline")
logger = logging.getLogger(__name__)

# Running sync tasks; the event loop only keeps weak references
_sync_tasks: set[asyncio.Task] = set()


# =============================================================================
# Schemas
# =============================================================================

class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionRequest(CamelModel):
    file_name: str = Field(min_length=1)
    rows: List[Dict[str, Any]] = Field(min_length=1)
    field_mappings: Dict[str, str] = Field(default_factory=dict)
    enrichment_config_ids: List[str] = Field(default_factory=list)
    file_content: Optional[str] = Field(default=None, description="Original file, base64 encoded")
    file_type: Optional[str] = None


class CreateSessionResponse(CamelModel):
    session_id: str
    total_rows: int
    status: SessionStatus
    expires_at: datetime


class SessionResponse(CamelModel):
    id: str
    account_id: str
    file_name: str
    status: SessionStatus
    total_rows: int
    processed_rows: int
    enriched_rows: int
    synced_rows: int
    failed_rows: int
    error_message: Optional[str] = None
    field_mappings: Dict[str, str]
    enrichment_config_ids: List[str]
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    has_file: bool
    retry_count: int
    max_retries: int
    expires_at: datetime
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, session: UploadSession) -> "SessionResponse":
        return cls(
            id=str(session.id),
            account_id=session.account_id,
            file_name=session.file_name,
            status=session.status,
            total_rows=session.total_rows,
            processed_rows=session.processed_rows,
            enriched_rows=session.enriched_rows,
            synced_rows=session.synced_rows,
            failed_rows=session.failed_rows,
            error_message=session.error_message,
            field_mappings=session.field_mappings or {},
            enrichment_config_ids=session.enrichment_config_ids or [],
            file_type=session.file_type,
            file_size=session.file_size,
            has_file=session.file_content is not None,
            retry_count=session.retry_count,
            max_retries=session.max_retries,
            expires_at=ensure_utc(session.expires_at),
            completed_at=ensure_utc(session.completed_at),
            created_at=ensure_utc(session.created_at),
            updated_at=ensure_utc(session.updated_at),
        )


class FailedRowDetail(CamelModel):
    """Position and error of a failed row; row contents are not exposed."""

    row_index: int
    status: RowStatus
    error: Optional[str] = None

    @classmethod
    def from_model(cls, row: UploadRow) -> "FailedRowDetail":
        return cls(row_index=row.row_index, status=row.status, error=row.error_message)


class SessionDetailResponse(CamelModel):
    session: SessionResponse
    row_status_counts: Dict[str, int]
    failed_row_details: List[FailedRowDetail]


class DeleteSessionResponse(CamelModel):
    success: bool = True
    session_id: str


class SyncRequest(CamelModel):
    task_assignee_id: str = Field(min_length=1)


class CancelSyncResponse(CamelModel):
    session_id: str
    cancelled: bool


class EnrichResponse(CamelModel):
    session_id: str
    status: SessionStatus
    total_rows: int
    enriched_rows: int
    failed_rows: int


class PurgeResponse(CamelModel):
    purged_count: int
    purged_session_ids: List[str]


class LogEntryResponse(CamelModel):
    id: str
    timestamp: str
    level: str
    step: str
    message: str
    session_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Error translation
# =============================================================================

@contextlib.contextmanager
def pipeline_errors(action: str) -> Iterator[None]:
    """Map PipelineError to its HTTP status; anything unexpected becomes a 500."""
    try:
        yield
    except PipelineError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": e.message, "code": e.error_code},
        )
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "code": "invalid_request"},
        )
    except Exception as e:
        logger.error(f"❌ {action} failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"{action} failed", "code": "internal_error"},
        )


# =============================================================================
# Sessions
# =============================================================================

@router.post("/sessions", response_model=CreateSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    store: Annotated[SessionStore, Depends(get_store)],
    account_id: Annotated[str, Depends(get_account_id)],
) -> CreateSessionResponse:
    """
    Create an upload session and store its rows (status pending).

    The retention clock starts now; expiresAt never moves.
    """
    file_bytes = None
    if request.file_content:
        try:
            file_bytes = base64.b64decode(request.file_content, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "fileContent must be base64 encoded", "code": "invalid_request"},
            )

    with pipeline_errors("Session creation"):
        session = await store.create_session(
            account_id=account_id,
            file_name=request.file_name,
            rows=request.rows,
            field_mappings=request.field_mappings,
            enrichment_config_ids=request.enrichment_config_ids,
            file_content=file_bytes,
            file_type=request.file_type,
        )

    pipeline_log.log_success(
        LogStep.UPLOAD,
        f"Stored {session.total_rows} rows from {session.file_name}",
        session.id,
    )
    return CreateSessionResponse(
        session_id=str(session.id),
        total_rows=session.total_rows,
        status=session.status,
        expires_at=ensure_utc(session.expires_at),
    )


@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(
    store: Annotated[SessionStore, Depends(get_store)],
    account_id: Annotated[str, Depends(get_account_id)],
    status_filter: Annotated[Optional[SessionStatus], Query(alias="status")] = None,
) -> List[SessionResponse]:
    """Sessions of the caller's account, newest first."""
    with pipeline_errors("Listing sessions"):
        sessions = await store.list_sessions(account_id, status_filter)
    return [SessionResponse.from_model(session) for session in sessions]


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session_detail(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_store)],
) -> SessionDetailResponse:
    """Session counters plus row status counts and the first 100 failed rows."""
    with pipeline_errors("Loading session"):
        session = await store.get_session(session_id)
        counts = await store.row_status_counts(session.id)
        failed = await store.failed_row_details(session.id)

    return SessionDetailResponse(
        session=SessionResponse.from_model(session),
        row_status_counts=counts,
        failed_row_details=[FailedRowDetail.from_model(row) for row in failed],
    )


@router.delete("/sessions/{session_id}", response_model=DeleteSessionResponse)
async def delete_session(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_store)],
    leases: Annotated[SessionLeaseRegistry, Depends(get_leases)],
) -> DeleteSessionResponse:
    """Delete a session and all of its rows. A running sync must be cancelled first."""
    with pipeline_errors("Deleting session"):
        session = await store.get_session(session_id)
        stale_after = get_settings().sync_stale_after_seconds
        if leases.is_running(session.id) or session.has_live_sync(stale_after):
            raise SyncAlreadyRunningError(session.id)
        await store.delete_session(session.id)

    pipeline_log.clear_session_logs(session.id)
    return DeleteSessionResponse(session_id=str(session.id))


@router.get("/sessions/{session_id}/logs", response_model=List[LogEntryResponse])
async def get_session_logs(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_store)],
) -> List[LogEntryResponse]:
    """Pipeline log entries recorded for a session in this process."""
    with pipeline_errors("Loading logs"):
        session = await store.get_session(session_id)
    return [LogEntryResponse(**entry) for entry in pipeline_log.get_session_logs(session.id)]


# =============================================================================
# Processing
# =============================================================================

@router.post("/sessions/{session_id}/enrich", response_model=EnrichResponse)
async def enrich_session(
    session_id: str,
    runner: Annotated[EnrichmentRunner, Depends(get_enrichment_runner)],
) -> EnrichResponse:
    """Validate and enrich all pending rows; the session becomes enriched."""
    with pipeline_errors("Enrichment"):
        summary = await runner.run(session_id)

    return EnrichResponse(
        session_id=str(summary.session_id),
        status=summary.status,
        total_rows=summary.total,
        enriched_rows=summary.enriched,
        failed_rows=summary.failed,
    )


async def _run_sync(
    runner: BatchRunner,
    run: SyncRun,
    task_assignee_id: str,
    streamer: ProgressStreamer,
) -> None:
    try:
        await runner.execute(run, task_assignee_id, streamer)
    except Exception as e:
        # Already logged with traceback by the runner; the stream carries the error
        logger.error(f"❌ Background sync of session {run.session_id} ended with error: {e}")


@router.post("/sessions/{session_id}/sync")
async def sync_session(
    session_id: str,
    request: SyncRequest,
    runner: Annotated[BatchRunner, Depends(get_batch_runner)],
) -> StreamingResponse:
    """
    Sync all enriched/failed rows to the CRM.

    Streams newline-delimited JSON:
        {"type": "result", "result": {...}}      after each row is stored
        {"type": "progress", "completed": n, "total": m}

    The sync runs in the background; disconnecting does not stop it.
    Use the cancel endpoint to stop it at the next row boundary.
    """
    with pipeline_errors("Sync"):
        run = await runner.start_run(session_id)

    streamer = ProgressStreamer()
    task = asyncio.create_task(_run_sync(runner, run, request.task_assignee_id, streamer))
    _sync_tasks.add(task)
    task.add_done_callback(_sync_tasks.discard)

    return StreamingResponse(
        streamer.ndjson(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/sessions/{session_id}/sync/cancel", response_model=CancelSyncResponse)
async def cancel_sync(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_store)],
    leases: Annotated[SessionLeaseRegistry, Depends(get_leases)],
) -> CancelSyncResponse:
    """Ask a running sync to stop after its current row."""
    with pipeline_errors("Cancelling sync"):
        session = await store.get_session(session_id)

    if not leases.cancel(session.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": f"No sync is running for upload session {session.id}", "code": "sync_not_running"},
        )
    return CancelSyncResponse(session_id=str(session.id), cancelled=True)


# =============================================================================
# Export & download
# =============================================================================

@router.get("/sessions/{session_id}/export")
async def export_session(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_store)],
    export_filter: Annotated[Literal["all", "clean", "flagged"], Query(alias="filter")] = "all",
) -> Response:
    """Stored rows as CSV (raw data merged with enrichment)."""
    with pipeline_errors("Export"):
        export = await export_session_csv(store, session_id, export_filter)

    return Response(
        content=export.content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export.file_name}"'},
    )


@router.get("/sessions/{session_id}/download")
async def download_original_file(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_store)],
) -> Response:
    """The originally uploaded file, until the session expires."""
    with pipeline_errors("Download"):
        session = await store.get_session(session_id)
        if session.status == SessionStatus.EXPIRED:
            raise SessionExpiredError(session.id, "This file has expired and been deleted")
        if session.is_past_retention():
            raise SessionExpiredError(session.id, "This file has expired")
        if session.file_content is None:
            raise FileContentMissingError(session.id)

    return Response(
        content=session.file_content,
        media_type=session.file_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{session.file_name or "download"}"'},
    )


# =============================================================================
# Retention
# =============================================================================

@router.post("/purge", response_model=PurgeResponse)
async def purge_expired_sessions(
    reaper: Annotated[RetentionReaper, Depends(get_retention_reaper)],
) -> PurgeResponse:
    """Purge every session past its retention window."""
    with pipeline_errors("Purge"):
        result = await reaper.purge_expired()

    return PurgeResponse(
        purged_count=result.purged_count,
        purged_session_ids=[str(session_id) for session_id in result.purged_session_ids],
    )
