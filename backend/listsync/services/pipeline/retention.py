"""
Retention Reaper.

Purges sessions whose retention window has passed, whatever their outcome:
rows (the PII) are deleted, stored file bytes are cleared and the session is
marked expired with a note naming its previous status. Counts, timestamps
and the file name stay for auditing.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from listsync.core.config import get_settings
from listsync.models.upload import SessionStatus
from listsync.services.pipeline.errors import ConcurrentModificationError
from listsync.services.pipeline.leases import SessionLeaseRegistry, get_session_leases
from listsync.services.pipeline.session_store import SessionStore
from listsync.services.pipeline_log import LogStep, pipeline_log
from listsync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    purged_count: int = 0
    purged_session_ids: List[uuid.UUID] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "purgedCount": self.purged_count,
            "purgedSessionIds": [str(session_id) for session_id in self.purged_session_ids],
        }


def purge_note(retention_days: int, previous_status: SessionStatus) -> str:
    return (
        f"Data purged after {retention_days}-day retention period "
        f"(original status: {previous_status.value})"
    )


class RetentionReaper:
    """Purges expired upload sessions."""

    def __init__(
        self,
        store: SessionStore,
        retention_days: Optional[int] = None,
        leases: Optional[SessionLeaseRegistry] = None,
    ):
        self.store = store
        self.retention_days = retention_days if retention_days is not None else get_settings().retention_days
        self.leases = leases or get_session_leases()

    async def purge_expired(self, now: Optional[datetime] = None) -> PurgeResult:
        """
        Purge every session past expires_at that is not expired or completed.

        Running it again purges nothing new; already expired sessions are
        left untouched.
        """
        result = PurgeResult()
        sessions = await self.store.find_expired_sessions(now or utcnow())

        for session in sessions:
            # A running sync finishes first; the next sweep picks the session up
            if self.leases.is_running(session.id):
                logger.info(f"⏭️ Skipping purge of session {session.id}, sync in progress")
                continue

            previous_status = session.status
            await self.store.delete_rows(session.id)
            try:
                await self.store.transition_session(
                    session.id,
                    previous_status,
                    SessionStatus.EXPIRED,
                    file_content=None,
                    error_message=purge_note(self.retention_days, previous_status),
                )
            except ConcurrentModificationError:
                logger.warning(f"⚠️ Session {session.id} changed status during purge, retrying next sweep")
                continue

            result.purged_count += 1
            result.purged_session_ids.append(session.id)
            pipeline_log.log_info(
                LogStep.PURGE,
                f"Purged session data (previous status: {previous_status.value})",
                session.id,
            )

        if result.purged_count:
            logger.info(f"🧹 Purged {result.purged_count} expired upload sessions")
        return result


async def run_retention_loop(reaper: RetentionReaper, interval_seconds: float) -> None:
    """Call the reaper every `interval_seconds` until cancelled."""
    logger.info(f"🧹 Retention sweep every {interval_seconds}s")
    while True:
        try:
            await reaper.purge_expired()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Retention sweep failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
