"""
Transition table tests for sessions and rows.
"""

import pytest

from listsync.models.upload import RowStatus, SessionStatus
from listsync.services.pipeline.errors import InvalidTransitionError
from listsync.services.pipeline.state_machine import (
    SESSION_TRANSITIONS,
    can_transition_row,
    can_transition_session,
    check_row_transition,
    check_session_transition,
)


class TestSessionTransitions:

    @pytest.mark.parametrize("current,target", [
        (SessionStatus.UPLOADED, SessionStatus.ENRICHED),
        (SessionStatus.ENRICHED, SessionStatus.SYNCING),
        (SessionStatus.SYNCING, SessionStatus.COMPLETED),
        (SessionStatus.SYNCING, SessionStatus.FAILED),
        (SessionStatus.FAILED, SessionStatus.SYNCING),
        (SessionStatus.FAILED, SessionStatus.ENRICHED),
        (SessionStatus.UPLOADED, SessionStatus.EXPIRED),
        (SessionStatus.FAILED, SessionStatus.EXPIRED),
    ])
    def test_allowed(self, current, target):
        assert can_transition_session(current, target)
        check_session_transition(current, target)

    def test_completed_to_syncing_fails_loudly(self):
        """
        SCENARIO: Someone tries to re-run a completed session.

        WHY THIS MATTERS:
        - Completed sessions have had their rows deleted
        - A silent status flip would make the UI show a sync of nothing

        EXPECTED: InvalidTransitionError (409).
        """
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_session_transition(SessionStatus.COMPLETED, SessionStatus.SYNCING)

        assert exc_info.value.status_code == 409
        assert "completed" in exc_info.value.message

    def test_terminal_states_have_no_exits(self):
        assert SESSION_TRANSITIONS[SessionStatus.COMPLETED] == frozenset()
        assert SESSION_TRANSITIONS[SessionStatus.EXPIRED] == frozenset()

    def test_every_status_has_an_entry(self):
        assert set(SESSION_TRANSITIONS) == set(SessionStatus)

    def test_uploaded_cannot_skip_enrichment(self):
        assert not can_transition_session(SessionStatus.UPLOADED, SessionStatus.SYNCING)


class TestRowTransitions:

    def test_synced_is_terminal(self):
        for target in RowStatus:
            assert not can_transition_row(RowStatus.SYNCED, target)

    def test_failed_row_can_be_retried(self):
        check_row_transition(RowStatus.FAILED, RowStatus.SYNCING)

    def test_failed_row_can_be_revalidated(self):
        check_row_transition(RowStatus.FAILED, RowStatus.VALIDATED)

    def test_failed_to_failed_updates_message(self):
        # Not a transition, but allowed so a retry can rewrite the error
        check_row_transition(RowStatus.FAILED, RowStatus.FAILED)

    def test_pending_cannot_jump_to_synced(self):
        with pytest.raises(InvalidTransitionError):
            check_row_transition(RowStatus.PENDING, RowStatus.SYNCED)
