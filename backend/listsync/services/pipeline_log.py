"""
Pipeline Log Tracking.

Keeps the most recent pipeline log entries in memory so a session's history
(upload, enrichment, sync, purge, export) can be shown via the API.
Entries are also forwarded to the standard logger.
"""

import csv
import io
import logging
import uuid
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from listsync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 1000


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class LogStep(str, Enum):
    UPLOAD = "upload"
    VALIDATE = "validate"
    ENRICH = "enrich"
    SYNC = "sync"
    PURGE = "purge"
    EXPORT = "export"


_LEVEL_MAP = {
    LogLevel.INFO: (logging.INFO, "ℹ️"),
    LogLevel.WARNING: (logging.WARNING, "⚠️"),
    LogLevel.ERROR: (logging.ERROR, "❌"),
    LogLevel.SUCCESS: (logging.INFO, "✅"),
}


class PipelineLogTracker:
    """
    Singleton ring buffer of pipeline log entries.
    Only the last MAX_LOG_ENTRIES entries are kept.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self, max_entries: int = MAX_LOG_ENTRIES):
        self.entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)

    def log(
        self,
        level: LogLevel,
        step: LogStep,
        message: str,
        session_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Record an entry and forward it to the standard logger."""
        level = LogLevel(level)
        step = LogStep(step)
        entry = {
            "id": f"log_{uuid.uuid4().hex[:12]}",
            "timestamp": utcnow().isoformat(),
            "level": level.value,
            "step": step.value,
            "message": message,
            "session_id": str(session_id) if session_id is not None else None,
            "details": details or {},
        }
        self.entries.append(entry)

        log_level, icon = _LEVEL_MAP[level]
        suffix = f" (session {entry['session_id']})" if entry["session_id"] else ""
        logger.log(log_level, f"{icon} [{step.value}] {message}{suffix}")
        return entry

    def log_info(self, step: LogStep, message: str, session_id=None, details=None) -> Dict[str, Any]:
        return self.log(LogLevel.INFO, step, message, session_id, details)

    def log_warning(self, step: LogStep, message: str, session_id=None, details=None) -> Dict[str, Any]:
        return self.log(LogLevel.WARNING, step, message, session_id, details)

    def log_error(self, step: LogStep, message: str, session_id=None, details=None) -> Dict[str, Any]:
        return self.log(LogLevel.ERROR, step, message, session_id, details)

    def log_success(self, step: LogStep, message: str, session_id=None, details=None) -> Dict[str, Any]:
        return self.log(LogLevel.SUCCESS, step, message, session_id, details)

    def get_session_logs(self, session_id) -> List[Dict[str, Any]]:
        key = str(session_id)
        return [entry for entry in self.entries if entry["session_id"] == key]

    def get_all_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return list(self.entries)[-limit:]

    def clear_session_logs(self, session_id) -> int:
        """Drop a session's entries; returns how many were removed."""
        key = str(session_id)
        kept = [entry for entry in self.entries if entry["session_id"] != key]
        removed = len(self.entries) - len(kept)
        self.entries.clear()
        self.entries.extend(kept)
        return removed

    def clear(self) -> None:
        self.entries.clear()

    def export_logs_csv(self, entries: Optional[List[Dict[str, Any]]] = None) -> str:
        """Entries (default: all) as CSV text."""
        rows = list(self.entries) if entries is None else entries
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(["Timestamp", "Level", "Step", "Message", "Session ID"])
        for entry in rows:
            writer.writerow([
                entry["timestamp"],
                entry["level"],
                entry["step"],
                entry["message"],
                entry["session_id"] or "",
            ])
        return buffer.getvalue()


# Singleton instance
pipeline_log = PipelineLogTracker()
