"""
Status transition tables for sessions and rows.

Every status write in the store goes through these checks; anything not
listed raises InvalidTransitionError.
"""

from typing import Dict, FrozenSet

from listsync.models.upload import RowStatus, SessionStatus
from listsync.services.pipeline.errors import InvalidTransitionError

SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.UPLOADED: frozenset({SessionStatus.ENRICHED, SessionStatus.EXPIRED}),
    SessionStatus.ENRICHED: frozenset({SessionStatus.SYNCING, SessionStatus.EXPIRED}),
    SessionStatus.SYNCING: frozenset(
        {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.EXPIRED}
    ),
    # failed -> syncing is the explicit retry, failed -> enriched a re-enrichment
    SessionStatus.FAILED: frozenset(
        {SessionStatus.SYNCING, SessionStatus.ENRICHED, SessionStatus.EXPIRED}
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}

ROW_TRANSITIONS: Dict[RowStatus, FrozenSet[RowStatus]] = {
    RowStatus.PENDING: frozenset({RowStatus.VALIDATED, RowStatus.FAILED}),
    RowStatus.VALIDATED: frozenset({RowStatus.ENRICHED, RowStatus.FAILED}),
    # enriched -> failed only when a sync run is aborted or cancelled
    RowStatus.ENRICHED: frozenset({RowStatus.SYNCING, RowStatus.FAILED}),
    RowStatus.SYNCING: frozenset({RowStatus.SYNCED, RowStatus.FAILED}),
    RowStatus.FAILED: frozenset({RowStatus.SYNCING, RowStatus.VALIDATED}),
    RowStatus.SYNCED: frozenset(),
}

# Rows a sync pass picks up; synced rows are never re-sent
SYNC_ELIGIBLE_ROW_STATUSES: FrozenSet[RowStatus] = frozenset({RowStatus.ENRICHED, RowStatus.FAILED})

# Sessions the retention reaper leaves alone
RETENTION_EXEMPT_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.EXPIRED, SessionStatus.COMPLETED}
)


def can_transition_session(current: SessionStatus, target: SessionStatus) -> bool:
    return target in SESSION_TRANSITIONS[current]


def can_transition_row(current: RowStatus, target: RowStatus) -> bool:
    return target in ROW_TRANSITIONS[current]


def check_session_transition(current: SessionStatus, target: SessionStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    if not can_transition_session(current, target):
        raise InvalidTransitionError("session", current, target)


def check_row_transition(current: RowStatus, target: RowStatus) -> None:
    """
    Raise InvalidTransitionError unless current -> target is allowed.

    Re-recording a failure on a row that is already failed is an update of
    its error message, not a transition.
    """
    if current == RowStatus.FAILED and target == RowStatus.FAILED:
        return
    if not can_transition_row(current, target):
        raise InvalidTransitionError("row", current, target)
