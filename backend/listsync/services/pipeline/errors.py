"""
Pipeline error taxonomy.

Row-level failures are never raised; they are recorded on the row. These
exceptions cover session-level conditions that must reach the API boundary.
Each carries the HTTP status it maps to and a stable error code.
"""


class PipelineError(Exception):
    """Base class for session-level pipeline errors."""

    status_code: int = 400
    error_code: str = "pipeline_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFoundError(PipelineError):
    """Raised when an upload session does not exist."""

    status_code = 404
    error_code = "session_not_found"

    def __init__(self, session_id):
        super().__init__(f"Upload session {session_id} not found")
        self.session_id = session_id


class RowNotFoundError(PipelineError):
    """Raised when an upload row does not exist."""

    status_code = 404
    error_code = "row_not_found"


class SessionExpiredError(PipelineError):
    """Raised for operations on a session past its retention window."""

    status_code = 410
    error_code = "session_expired"

    def __init__(self, session_id, message: str | None = None):
        super().__init__(message or f"Upload session {session_id} has expired and its data was purged")
        self.session_id = session_id


class InvalidTransitionError(PipelineError):
    """Raised when a status change is not in the transition table."""

    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, kind: str, current, target):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(f"Cannot move {kind} from '{current_value}' to '{target_value}'")
        self.current = current
        self.target = target


class RetryLimitExceededError(PipelineError):
    """Raised when a failed session has used up its retries."""

    status_code = 409
    error_code = "retry_limit_exceeded"

    def __init__(self, session_id, retry_count: int, max_retries: int):
        super().__init__(
            f"Upload session {session_id} already retried {retry_count} of {max_retries} times"
        )
        self.session_id = session_id
        self.retry_count = retry_count
        self.max_retries = max_retries


class SyncAlreadyRunningError(PipelineError):
    """Raised when a second sync run is started for the same session."""

    status_code = 409
    error_code = "sync_already_running"

    def __init__(self, session_id):
        super().__init__(f"A sync is already running for upload session {session_id}")
        self.session_id = session_id


class ConcurrentModificationError(PipelineError):
    """Raised when a compare-and-set status update loses a race."""

    status_code = 409
    error_code = "concurrent_modification"


class NoRowsForFilterError(PipelineError):
    """Raised when an export filter matches no stored rows."""

    status_code = 404
    error_code = "no_rows_for_filter"

    def __init__(self, export_filter: str):
        super().__init__(f"No rows found for filter '{export_filter}'")
        self.export_filter = export_filter


class FileContentMissingError(PipelineError):
    """Raised when a session has no stored original file."""

    status_code = 404
    error_code = "file_content_missing"

    def __init__(self, session_id):
        super().__init__("No file content stored for this session")
        self.session_id = session_id
