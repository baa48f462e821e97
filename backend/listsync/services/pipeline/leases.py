"""
Per-session single-flight guard for sync runs.

Only one sync may run for a session inside this process. The lease also
carries the cancellation signal that the batch runner checks between rows.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict

from listsync.services.pipeline.errors import SyncAlreadyRunningError

logger = logging.getLogger(__name__)


@dataclass
class SessionLease:
    session_id: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class SessionLeaseRegistry:
    """Registry of running sync runs keyed by session id."""

    def __init__(self):
        self._leases: Dict[str, SessionLease] = {}

    def acquire(self, session_id) -> SessionLease:
        key = str(session_id)
        if key in self._leases:
            raise SyncAlreadyRunningError(session_id)
        lease = SessionLease(session_id=key)
        self._leases[key] = lease
        logger.debug(f"Lease acquired for session {key}")
        return lease

    def release(self, lease: SessionLease) -> None:
        # Only the holder may release; a stale lease must not drop a newer one
        if self._leases.get(lease.session_id) is lease:
            del self._leases[lease.session_id]
            logger.debug(f"Lease released for session {lease.session_id}")

    def cancel(self, session_id) -> bool:
        """Signal cancellation; False if no sync is running for the session."""
        lease = self._leases.get(str(session_id))
        if lease is None:
            return False
        lease.cancel_event.set()
        logger.info(f"🛑 Cancellation requested for session {session_id}")
        return True

    def is_running(self, session_id) -> bool:
        return str(session_id) in self._leases

    def active_count(self) -> int:
        return len(self._leases)


_session_leases: SessionLeaseRegistry | None = None


def get_session_leases() -> SessionLeaseRegistry:
    """Process-wide lease registry."""
    global _session_leases
    if _session_leases is None:
        _session_leases = SessionLeaseRegistry()
    return _session_leases
