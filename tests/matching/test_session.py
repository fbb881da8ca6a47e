from datetime import UTC, datetime, timedelta

import pytest

from rider_matching.core.exceptions import AlreadyTerminalError, InvalidTransitionError
from rider_matching.matching.session import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    MatchingSession,
    SessionState,
)

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def session() -> MatchingSession:
    return MatchingSession(trip_id="trip-1", max_attempts=3, created_at=T0)


@pytest.mark.unit
class TestSessionStates:
    def test_terminal_states(self):
        assert TERMINAL_STATES == {
            SessionState.MATCHED,
            SessionState.FAILED,
            SessionState.CANCELLED,
        }
        assert not SessionState.SEARCHING.is_terminal

    def test_terminal_states_have_no_transitions(self):
        for state in TERMINAL_STATES:
            assert VALID_TRANSITIONS[state] == set()

    def test_new_session_is_searching(self, session: MatchingSession):
        assert session.state == SessionState.SEARCHING
        assert session.attempts == 0
        assert not session.is_terminal


@pytest.mark.unit
class TestSessionLifecycle:
    def test_begin_attempt_counts_attempts(self, session: MatchingSession):
        assert session.begin_attempt(T0) == 1
        assert session.begin_attempt(T0 + timedelta(seconds=1)) == 2
        assert session.last_attempt_at == T0 + timedelta(seconds=1)

    def test_attempts_capped(self, session: MatchingSession):
        for _ in range(3):
            session.begin_attempt(T0)

        with pytest.raises(InvalidTransitionError):
            session.begin_attempt(T0)

    def test_schedule_retry_sets_cooldown(self, session: MatchingSession):
        session.begin_attempt(T0)

        until = session.schedule_retry(T0, 1.5, "no drivers available")

        assert until == T0 + timedelta(seconds=1.5)
        assert session.cooldown_until == until
        assert session.state == SessionState.SEARCHING
        assert session.failure_reason == "no drivers available"

    def test_begin_attempt_clears_cooldown(self, session: MatchingSession):
        session.begin_attempt(T0)
        session.schedule_retry(T0, 1.0, "no drivers available")

        session.begin_attempt(T0 + timedelta(seconds=1))

        assert session.cooldown_until is None

    def test_schedule_retry_without_attempts_left(self, session: MatchingSession):
        for _ in range(3):
            session.begin_attempt(T0)

        with pytest.raises(InvalidTransitionError):
            session.schedule_retry(T0, 1.0, "no drivers available")

    def test_mark_matched(self, session: MatchingSession):
        session.begin_attempt(T0)
        session.schedule_retry(T0, 1.0, "no drivers available")
        session.begin_attempt(T0)

        session.mark_matched("driver-a", T0)

        assert session.state == SessionState.MATCHED
        assert session.matched_driver_id == "driver-a"
        assert session.failure_reason is None
        assert session.finished_at == T0

    def test_mark_failed(self, session: MatchingSession):
        session.begin_attempt(T0)

        session.mark_failed("no drivers available", T0)

        assert session.state == SessionState.FAILED
        assert session.failure_reason == "no drivers available"

    def test_cancel(self, session: MatchingSession):
        session.begin_attempt(T0)
        session.schedule_retry(T0, 5.0, "no drivers available")

        session.cancel(T0)

        assert session.state == SessionState.CANCELLED
        assert session.cooldown_until is None

    @pytest.mark.parametrize("terminal", ["matched", "failed", "cancelled"])
    def test_terminal_sessions_reject_transitions(
        self, session: MatchingSession, terminal: str
    ):
        if terminal == "matched":
            session.mark_matched("driver-a", T0)
        elif terminal == "failed":
            session.mark_failed("no drivers available", T0)
        else:
            session.cancel(T0)

        with pytest.raises(AlreadyTerminalError):
            session.cancel(T0)
        with pytest.raises(AlreadyTerminalError):
            session.begin_attempt(T0)
        with pytest.raises(AlreadyTerminalError):
            session.transition_to(SessionState.SEARCHING)


@pytest.mark.unit
class TestSessionExpiry:
    def test_searching_session_never_expires(self, session: MatchingSession):
        assert not session.is_expired(T0 + timedelta(days=1), 300)

    def test_terminal_session_expires_after_retention(self, session: MatchingSession):
        session.mark_failed("no drivers available", T0)

        assert not session.is_expired(T0 + timedelta(seconds=299), 300)
        assert session.is_expired(T0 + timedelta(seconds=300), 300)

    def test_snapshot_is_detached_copy(self, session: MatchingSession):
        session.begin_attempt(T0)
        snapshot = session.snapshot()

        session.mark_matched("driver-a", T0)

        assert snapshot.state == SessionState.SEARCHING
        assert snapshot.attempts == 1
        assert snapshot.matched_driver_id is None
        with pytest.raises(Exception):
            snapshot.attempts = 5
