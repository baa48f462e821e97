"""
Import pipeline: sessions and rows moving through
validation -> enrichment -> CRM sync, plus retention and export.
"""

from listsync.services.pipeline.auth_guard import AuthGuard, ErrorClass, classify_error
from listsync.services.pipeline.batch_runner import BatchRunner, RunSummary, SyncRun
from listsync.services.pipeline.enrichment_runner import EnrichmentRunner, EnrichmentSummary
from listsync.services.pipeline.errors import (
    ConcurrentModificationError,
    FileContentMissingError,
    InvalidTransitionError,
    NoRowsForFilterError,
    PipelineError,
    RetryLimitExceededError,
    RowNotFoundError,
    SessionExpiredError,
    SessionNotFoundError,
    SyncAlreadyRunningError,
)
from listsync.services.pipeline.export import CsvExport, export_session_csv
from listsync.services.pipeline.leases import SessionLeaseRegistry, get_session_leases
from listsync.services.pipeline.progress import ProgressStreamer, RowOutcome
from listsync.services.pipeline.rate_limiter import FixedDelayRateLimiter, TokenBucketRateLimiter
from listsync.services.pipeline.retention import PurgeResult, RetentionReaper
from listsync.services.pipeline.row_processor import RowProcessor
from listsync.services.pipeline.session_store import SessionStore, get_session_store

__all__ = [
    "AuthGuard",
    "BatchRunner",
    "ConcurrentModificationError",
    "CsvExport",
    "EnrichmentRunner",
    "EnrichmentSummary",
    "ErrorClass",
    "FileContentMissingError",
    "FixedDelayRateLimiter",
    "InvalidTransitionError",
    "NoRowsForFilterError",
    "PipelineError",
    "ProgressStreamer",
    "PurgeResult",
    "RetentionReaper",
    "RetryLimitExceededError",
    "RowNotFoundError",
    "RowOutcome",
    "RowProcessor",
    "RunSummary",
    "SessionExpiredError",
    "SessionLeaseRegistry",
    "SessionNotFoundError",
    "SessionStore",
    "SyncAlreadyRunningError",
    "SyncRun",
    "TokenBucketRateLimiter",
    "classify_error",
    "export_session_csv",
    "get_session_leases",
    "get_session_store",
]
