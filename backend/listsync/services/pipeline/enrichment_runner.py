"""
Enrichment Runner: the validation and enrichment stage of a session.

Moves a session from uploaded (or failed) to enriched. Every pending row
runs through the validation scripts and then through the session's
enrichment configs in execution order. Row failures, including enrichers
that raise, are recorded on the row and never stop the stage.

Rows a crashed run left validated are picked up again. Re-enriching a
failed session also retries its failed rows and consumes one retry.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from listsync.models.integration import EnrichmentConfig
from listsync.models.upload import RowStatus, SessionStatus, UploadRow, UploadSession
from listsync.services.enrichment import Enricher, EnrichmentResult
from listsync.services.pipeline.errors import RetryLimitExceededError, SessionExpiredError
from listsync.services.pipeline.leases import SessionLeaseRegistry, get_session_leases
from listsync.services.pipeline.rate_limiter import RateLimiter
from listsync.services.pipeline.session_store import SessionStore
from listsync.services.pipeline.state_machine import check_session_transition
from listsync.services.pipeline.validation_scripts import ValidationContext, run_validation_scripts
from listsync.services.pipeline_log import LogStep, pipeline_log

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentSummary:
    session_id: uuid.UUID
    status: SessionStatus
    total: int = 0
    enriched: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": str(self.session_id),
            "status": self.status.value,
            "totalRows": self.total,
            "enrichedRows": self.enriched,
            "failedRows": self.failed,
        }


def validate_row(raw_data: Dict[str, Any], field_mappings: Dict[str, str]) -> Optional[str]:
    """First validation error for a row, or None if it is valid."""
    result = run_validation_scripts(0, raw_data, ValidationContext(field_mappings))
    return result.errors[0] if result.errors else None


class EnrichmentRunner:
    """Runs the enrichment stage for upload sessions."""

    def __init__(
        self,
        store: SessionStore,
        enricher: Enricher,
        rate_limiter: RateLimiter,
        leases: Optional[SessionLeaseRegistry] = None,
        page_size: int = 50,
    ):
        self.store = store
        self.enricher = enricher
        self.rate_limiter = rate_limiter
        self.leases = leases or get_session_leases()
        self.page_size = page_size

    async def run(self, session_id) -> EnrichmentSummary:
        session = await self.store.get_session(session_id)
        if session.is_past_retention():
            raise SessionExpiredError(session.id)
        check_session_transition(session.status, SessionStatus.ENRICHED)

        lease = self.leases.acquire(session.id)
        try:
            statuses = [RowStatus.PENDING, RowStatus.VALIDATED]
            if session.status == SessionStatus.FAILED:
                if session.retry_count >= session.max_retries:
                    raise RetryLimitExceededError(session.id, session.retry_count, session.max_retries)
                # Failed rows are counted again as they are re-processed
                await self.store.update_session_fields(
                    session.id,
                    retry_count=UploadSession.retry_count + 1,
                    failed_rows=0,
                    error_message=None,
                )
                statuses.append(RowStatus.FAILED)

            configs = await self.store.get_enrichment_configs(session.enrichment_config_ids or [])
            context = ValidationContext(session.field_mappings)
            summary = EnrichmentSummary(session_id=session.id, status=session.status, total=session.total_rows)

            pipeline_log.log_info(
                LogStep.ENRICH,
                f"Starting enrichment of {session.total_rows} rows with {len(configs)} configs",
                session.id,
            )

            after_index = -1
            while True:
                page = await self.store.fetch_rows_page(
                    session.id,
                    statuses,
                    after_index=after_index,
                    limit=self.page_size,
                )
                if not page:
                    break

                for row in page:
                    after_index = row.row_index
                    if await self._process_row(session.id, row, context, configs):
                        summary.enriched += 1
                    else:
                        summary.failed += 1

                if len(page) < self.page_size:
                    break

            await self.store.transition_session(session.id, session.status, SessionStatus.ENRICHED)
            summary.status = SessionStatus.ENRICHED
        finally:
            self.leases.release(lease)

        pipeline_log.log_success(
            LogStep.ENRICH,
            f"Enrichment finished: {summary.enriched} rows ready, {summary.failed} failed",
            session.id,
        )
        return summary

    async def _fail_row(self, session_id, row: UploadRow, expected: RowStatus, step: LogStep, error: str, **values):
        await self.store.update_row_status(row.id, expected, RowStatus.FAILED, error_message=error, **values)
        await self.store.increment_counters(session_id, failed_rows=1)
        pipeline_log.log_warning(step, f"Row {row.row_index + 1}: {error}", session_id)

    async def _enrich(self, config: EnrichmentConfig, row_index: int, data: Dict[str, Any]) -> EnrichmentResult:
        try:
            return await self.enricher.enrich(config, data)
        except Exception as e:
            logger.warning(f"⚠️ Enrichment '{config.name}' raised on row {row_index + 1}: {e}", exc_info=True)
            return EnrichmentResult(value=None, success=False, error=f"Enrichment '{config.name}' failed: {e}")

    async def _process_row(
        self,
        session_id: uuid.UUID,
        row: UploadRow,
        context: ValidationContext,
        configs: List[EnrichmentConfig],
    ) -> bool:
        """Validate and enrich one row; returns True if it ended enriched."""
        raw = dict(row.raw_data or {})
        enriched: Dict[str, Any] = dict(row.enriched_data or {})

        validation = run_validation_scripts(row.row_index, {**raw, **enriched}, context)
        for warning in validation.warnings:
            pipeline_log.log_warning(LogStep.VALIDATE, f"Row {row.row_index + 1}: {warning}", session_id)
        # Cleaned values sit beside the untouched upload
        enriched.update(validation.changes)

        status = row.status
        if not validation.valid:
            await self._fail_row(
                session_id, row, status, LogStep.VALIDATE, "; ".join(validation.errors), enriched_data=enriched
            )
            return False

        if status != RowStatus.VALIDATED:
            await self.store.update_row_status(
                row.id, status, RowStatus.VALIDATED, enriched_data=enriched, error_message=None
            )

        error = None
        for config in configs:
            current = {**raw, **enriched}
            # Values already present in the upload are not looked up again
            if str(current.get(config.output_field) or "").strip():
                continue

            result = await self._enrich(config, row.row_index, current)
            await self.rate_limiter.wait()

            if result.success and result.value:
                enriched[config.output_field] = result.value
            else:
                error = result.error or f"Enrichment '{config.name}' failed"
                break

        if error:
            await self._fail_row(
                session_id, row, RowStatus.VALIDATED, LogStep.ENRICH, error, enriched_data=enriched
            )
            return False

        await self.store.update_row_status(
            row.id,
            RowStatus.VALIDATED,
            RowStatus.ENRICHED,
            enriched_data=enriched,
            error_message=None,
        )
        await self.store.increment_counters(session_id, enriched_rows=1, processed_rows=1)
        return True
