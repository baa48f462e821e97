"""
Batch Runner.

Drives a session's sync-eligible rows (enriched or failed) through the Row
Processor in pages ordered by row_index, one row at a time:

1. mark the row syncing (committed before the CRM call)
2. process it
3. commit synced/failed plus counters, then emit result and progress
4. wait on the rate limiter, whatever the outcome

Pages are the recovery unit: a crashed run leaves at most the current row in
'syncing'. Once the session has had no writes for `stale_after_seconds`
the next run turns that row back into a failed, eligible one.
At the end synced rows are deleted (their PII now lives in the CRM) and the
session becomes completed only if no rows remain, otherwise failed.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from listsync.models.upload import RowStatus, SessionStatus, UploadRow, UploadSession
from listsync.services.pipeline.auth_guard import (
    MISSING_TOKEN_MESSAGE,
    TOKEN_EXPIRED_MESSAGE,
    AuthGuard,
    ErrorClass,
    classify_error,
)
from listsync.services.pipeline.errors import (
    RetryLimitExceededError,
    SessionExpiredError,
    SyncAlreadyRunningError,
)
from listsync.services.pipeline.field_mapping import mapped_email
from listsync.services.pipeline.leases import SessionLease, SessionLeaseRegistry, get_session_leases
from listsync.services.pipeline.progress import ProgressStreamer, RowOutcome
from listsync.services.pipeline.rate_limiter import RateLimiter
from listsync.services.pipeline.row_processor import RowProcessor
from listsync.services.pipeline.session_store import SessionStore
from listsync.services.pipeline.state_machine import (
    SYNC_ELIGIBLE_ROW_STATUSES,
    check_session_transition,
)
from listsync.services.pipeline_log import LogStep, PipelineLogTracker, pipeline_log
from listsync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

# Seconds without a session write before a 'syncing' session counts as abandoned
DEFAULT_STALE_AFTER_SECONDS = 900.0

INTERRUPTED_MESSAGE = "Interrupted during sync"
INTERNAL_ERROR_MESSAGE = "Sync aborted due to an internal error"


@dataclass
class SyncRun:
    """A session that has been moved to 'syncing' and is owned by this runner."""
    session_id: uuid.UUID
    lease: SessionLease
    total: int
    field_mappings: Dict[str, str]
    retry_count: int


@dataclass
class RunSummary:
    session_id: uuid.UUID
    status: SessionStatus
    total: int = 0
    synced: int = 0
    failed: int = 0
    deleted_rows: int = 0
    page_sizes: List[int] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False
    credentials_missing: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": str(self.session_id),
            "status": self.status.value,
            "total": self.total,
            "synced": self.synced,
            "failed": self.failed,
            "deletedRows": self.deleted_rows,
            "pages": len(self.page_sizes),
            "aborted": self.aborted,
            "cancelled": self.cancelled,
            "errorMessage": self.error_message,
        }


class BatchRunner:
    """
    Runs sync passes for upload sessions.

    Rows are processed strictly sequentially; the rate limiter is the
    CRM's throughput contract.
    """

    def __init__(
        self,
        store: SessionStore,
        processor: RowProcessor,
        auth_guard: AuthGuard,
        rate_limiter: RateLimiter,
        leases: Optional[SessionLeaseRegistry] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        log: Optional[PipelineLogTracker] = None,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        now: Callable[[], datetime] = utcnow,
    ):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.store = store
        self.processor = processor
        self.auth_guard = auth_guard
        self.rate_limiter = rate_limiter
        self.leases = leases or get_session_leases()
        self.page_size = page_size
        self.log = log or pipeline_log
        self.stale_after_seconds = stale_after_seconds
        self._now = now

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start_run(self, session_id) -> SyncRun:
        """
        Claim a session for syncing.

        Raises:
            SessionNotFoundError: Unknown session
            SessionExpiredError: Session past its retention window
            SyncAlreadyRunningError: Another run holds the session, here or in
                another worker that is still writing to it
            RetryLimitExceededError: Failed session has no retries left
            InvalidTransitionError: Session is not enriched or failed
        """
        session = await self.store.get_session(session_id)
        if session.is_past_retention():
            raise SessionExpiredError(session.id)

        lease = self.leases.acquire(session.id)
        try:
            if session.status == SessionStatus.SYNCING:
                if session.has_live_sync(self.stale_after_seconds, self._now()):
                    raise SyncAlreadyRunningError(session.id)
                logger.warning(f"⚠️ Session {session.id} was left in 'syncing', recovering")
                session = await self.store.transition_session(
                    session.id,
                    SessionStatus.SYNCING,
                    SessionStatus.FAILED,
                    error_message=INTERRUPTED_MESSAGE,
                )

            values: Dict[str, Any] = {}
            if session.status == SessionStatus.FAILED:
                if session.retry_count >= session.max_retries:
                    raise RetryLimitExceededError(session.id, session.retry_count, session.max_retries)
                values["retry_count"] = UploadSession.retry_count + 1
            else:
                check_session_transition(session.status, SessionStatus.SYNCING)

            session = await self.store.transition_session(
                session.id,
                session.status,
                SessionStatus.SYNCING,
                error_message=None,
                completed_at=None,
                failed_rows=0,
                processed_rows=UploadSession.synced_rows,
                **values,
            )

            await self.store.recover_interrupted_rows(session.id, INTERRUPTED_MESSAGE)
            total = await self.store.count_rows(session.id, SYNC_ELIGIBLE_ROW_STATUSES)
        except BaseException:
            self.leases.release(lease)
            raise

        self.log.log_info(
            LogStep.SYNC,
            f"Starting sync for {total} rows (attempt {session.retry_count + 1})",
            session.id,
        )
        return SyncRun(
            session_id=session.id,
            lease=lease,
            total=total,
            field_mappings=dict(session.field_mappings or {}),
            retry_count=session.retry_count,
        )

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    async def execute(
        self,
        run: SyncRun,
        task_assignee_id: Optional[str] = None,
        streamer: Optional[ProgressStreamer] = None,
    ) -> RunSummary:
        """Process every eligible row of a claimed session and close it out."""
        streamer = streamer or ProgressStreamer()
        summary = RunSummary(session_id=run.session_id, status=SessionStatus.SYNCING, total=run.total)

        try:
            if await self.auth_guard.ensure_credentials():
                await self._process_pages(run, task_assignee_id, streamer, summary)
            else:
                await self._fail_remaining(run, streamer, summary, MISSING_TOKEN_MESSAGE)
                summary.credentials_missing = True
                summary.error_message = MISSING_TOKEN_MESSAGE
                self.log.log_error(LogStep.SYNC, MISSING_TOKEN_MESSAGE, run.session_id)

            await self._finish(run, summary)
        except Exception as e:
            logger.error(f"❌ Sync of session {run.session_id} failed: {e}", exc_info=True)
            self.log.log_error(LogStep.SYNC, f"{INTERNAL_ERROR_MESSAGE}: {e}", run.session_id)
            await self._mark_failed_after_error(run, e)
            streamer.close(error=INTERNAL_ERROR_MESSAGE)
            raise
        finally:
            self.leases.release(run.lease)

        streamer.close()
        return summary

    async def sync_session(
        self,
        session_id,
        task_assignee_id: Optional[str] = None,
        streamer: Optional[ProgressStreamer] = None,
    ) -> RunSummary:
        """start_run + execute in one call."""
        run = await self.start_run(session_id)
        return await self.execute(run, task_assignee_id, streamer)

    async def _process_pages(
        self,
        run: SyncRun,
        task_assignee_id: Optional[str],
        streamer: ProgressStreamer,
        summary: RunSummary,
    ) -> None:
        after_index = -1

        while True:
            if run.lease.cancelled:
                summary.cancelled = True
                return

            page = await self.store.fetch_rows_page(
                run.session_id,
                SYNC_ELIGIBLE_ROW_STATUSES,
                after_index=after_index,
                limit=self.page_size,
            )
            if not page:
                return
            summary.page_sizes.append(len(page))
            logger.debug(f"Session {run.session_id}: page {len(summary.page_sizes)} with {len(page)} rows")

            for row in page:
                # Cancellation is only honoured between rows, never mid-call
                if run.lease.cancelled:
                    summary.cancelled = True
                    return

                after_index = row.row_index
                abort = await self._sync_row(run, row, task_assignee_id, streamer, summary)
                if abort:
                    summary.aborted = True
                    summary.error_message = TOKEN_EXPIRED_MESSAGE
                    self.log.log_error(LogStep.SYNC, TOKEN_EXPIRED_MESSAGE, run.session_id)
                    await self._fail_remaining(run, streamer, summary, TOKEN_EXPIRED_MESSAGE, after_index)
                    return

            if len(page) < self.page_size:
                return

    async def _sync_row(
        self,
        run: SyncRun,
        row: UploadRow,
        task_assignee_id: Optional[str],
        streamer: ProgressStreamer,
        summary: RunSummary,
    ) -> bool:
        """Sync one row; returns True if the run must abort."""
        merged = row.merged_data()
        await self.store.update_row_status(row.id, row.status, RowStatus.SYNCING)

        abort = False
        try:
            outcome = await self.processor.process(
                row.row_index,
                merged,
                run.field_mappings,
                task_assignee_id,
            )
        except Exception as e:
            if classify_error(e) != ErrorClass.AUTH_EXPIRED:
                raise
            logger.warning(
                f"⚠️ Auth error on row {row.row_index} "
                f"(consecutive: {self.auth_guard.consecutive_failures + 1}): {e}"
            )
            abort = await self.auth_guard.record_auth_failure()
            outcome = RowOutcome.failed(
                row.row_index,
                TOKEN_EXPIRED_MESSAGE,
                contact_email=mapped_email(merged, run.field_mappings),
            )
        else:
            if outcome.success:
                self.auth_guard.record_success()

        if outcome.success:
            await self.store.update_row_status(
                row.id,
                RowStatus.SYNCING,
                RowStatus.SYNCED,
                crm_contact_id=outcome.contact_id,
                crm_company_id=outcome.matched_company.id if outcome.matched_company else None,
                error_message=None,
            )
            await self.store.increment_counters(run.session_id, synced_rows=1, processed_rows=1)
            summary.synced += 1
        else:
            await self.store.update_row_status(
                row.id,
                RowStatus.SYNCING,
                RowStatus.FAILED,
                error_message=outcome.error,
            )
            await self.store.increment_counters(run.session_id, failed_rows=1)
            summary.failed += 1
            if not abort:
                self.log.log_warning(
                    LogStep.SYNC,
                    f"Error processing row {row.row_index + 1}: {outcome.error}",
                    run.session_id,
                )

        # Persisted above, so listeners never run ahead of the store
        streamer.result(outcome)
        streamer.progress(summary.synced + summary.failed, run.total)

        await self.rate_limiter.wait()
        return abort

    async def _fail_remaining(
        self,
        run: SyncRun,
        streamer: ProgressStreamer,
        summary: RunSummary,
        message: str,
        after_index: int = -1,
    ) -> None:
        """Fail every eligible row past `after_index` with one message, without CRM calls."""
        rows = await self.store.fail_rows(
            run.session_id,
            SYNC_ELIGIBLE_ROW_STATUSES,
            message,
            after_index=after_index,
        )
        if not rows:
            return

        await self.store.increment_counters(run.session_id, failed_rows=len(rows))
        for row in rows:
            summary.failed += 1
            streamer.result(
                RowOutcome.failed(
                    row.row_index,
                    message,
                    contact_email=mapped_email(row.merged_data(), run.field_mappings),
                )
            )
        streamer.progress(summary.synced + summary.failed, run.total)

    async def _finish(self, run: SyncRun, summary: RunSummary) -> None:
        summary.deleted_rows = await self.store.delete_rows(run.session_id, RowStatus.SYNCED)
        # Anything still stored must stay reachable by the retention reaper
        remaining = await self.store.count_rows(run.session_id)

        if summary.failed == 0 and not summary.cancelled and remaining == 0:
            await self.store.transition_session(
                run.session_id,
                SessionStatus.SYNCING,
                SessionStatus.COMPLETED,
                completed_at=utcnow(),
                failed_rows=0,
            )
            summary.status = SessionStatus.COMPLETED
            self.log.log_success(
                LogStep.SYNC,
                f"All {summary.synced} rows synced. Data has been cleared.",
                run.session_id,
            )
            return

        if summary.error_message is None:
            if summary.cancelled:
                summary.error_message = (
                    f"Sync cancelled after {summary.synced + summary.failed} of {run.total} rows. "
                    f"{summary.synced} rows synced successfully."
                )
            elif summary.failed:
                summary.error_message = (
                    f"{summary.failed} rows failed to sync to HubSpot. "
                    f"{summary.synced} rows synced successfully."
                )
            else:
                summary.error_message = (
                    f"{remaining} rows were not ready to sync. "
                    f"{summary.synced} rows synced successfully."
                )

        await self.store.transition_session(
            run.session_id,
            SessionStatus.SYNCING,
            SessionStatus.FAILED,
            error_message=summary.error_message,
        )
        summary.status = SessionStatus.FAILED
        self.log.log_warning(LogStep.SYNC, summary.error_message, run.session_id)

    async def _mark_failed_after_error(self, run: SyncRun, error: Exception) -> None:
        try:
            await self.store.transition_session(
                run.session_id,
                SessionStatus.SYNCING,
                SessionStatus.FAILED,
                error_message=f"{INTERNAL_ERROR_MESSAGE}: {error}",
            )
        except Exception as e:
            # The original error is re-raised by the caller
            logger.error(f"❌ Could not mark session {run.session_id} as failed: {e}")
