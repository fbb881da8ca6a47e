"""Matching session state machine."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from rider_matching.core.exceptions import AlreadyTerminalError, InvalidTransitionError


class SessionState(str, Enum):
    """Matching session lifecycle states."""

    SEARCHING = "searching"
    MATCHED = "matched"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.MATCHED, SessionState.FAILED, SessionState.CANCELLED})

VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.SEARCHING: {
        SessionState.SEARCHING,
        SessionState.MATCHED,
        SessionState.FAILED,
        SessionState.CANCELLED,
    },
    SessionState.MATCHED: set(),
    SessionState.FAILED: set(),
    SessionState.CANCELLED: set(),
}


class SessionSnapshot(BaseModel):
    """Immutable copy of a session handed out to status readers."""

    model_config = ConfigDict(frozen=True)

    trip_id: str
    state: SessionState
    attempts: int
    max_attempts: int
    created_at: datetime
    last_attempt_at: datetime | None
    cooldown_until: datetime | None
    finished_at: datetime | None
    failure_reason: str | None
    matched_driver_id: str | None


class MatchingSession(BaseModel):
    """Per-trip record of matching attempts and their terminal outcome.

    Not thread-safe on its own: callers mutate it only while holding the
    ConcurrencyGuard lock.
    """

    trip_id: str
    max_attempts: int = Field(ge=1)
    created_at: datetime
    state: SessionState = Field(default=SessionState.SEARCHING)
    attempts: int = Field(default=0)
    last_attempt_at: datetime | None = None
    cooldown_until: datetime | None = None
    finished_at: datetime | None = None
    failure_reason: str | None = None
    matched_driver_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition_to(self, new_state: SessionState) -> None:
        """Transition to a new state with validation."""
        if self.state.is_terminal:
            raise AlreadyTerminalError(
                f"Cannot transition from terminal state {self.state.value}",
                details={"trip_id": self.trip_id, "state": self.state.value},
            )

        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Invalid transition from {self.state.value} to {new_state.value}",
                details={"trip_id": self.trip_id},
            )

        self.state = new_state

    def begin_attempt(self, now: datetime) -> int:
        """Record the start of a selection attempt and return its 1-based number."""
        if self.state != SessionState.SEARCHING:
            self.transition_to(SessionState.SEARCHING)
        if self.attempts >= self.max_attempts:
            raise InvalidTransitionError(
                f"Attempt limit {self.max_attempts} already reached",
                details={"trip_id": self.trip_id},
            )
        self.attempts += 1
        self.last_attempt_at = now
        self.cooldown_until = None
        return self.attempts

    def schedule_retry(self, now: datetime, delay_seconds: float, reason: str) -> datetime:
        """Stay in SEARCHING after a no-match and set the cooldown deadline."""
        self.transition_to(SessionState.SEARCHING)
        if self.attempts >= self.max_attempts:
            raise InvalidTransitionError(
                "No attempts left to retry",
                details={"trip_id": self.trip_id, "attempts": self.attempts},
            )
        self.failure_reason = reason
        self.cooldown_until = now + timedelta(seconds=delay_seconds)
        return self.cooldown_until

    def mark_matched(self, driver_id: str, now: datetime) -> None:
        self.transition_to(SessionState.MATCHED)
        self.matched_driver_id = driver_id
        self.failure_reason = None
        self.cooldown_until = None
        self.finished_at = now

    def mark_failed(self, reason: str, now: datetime) -> None:
        self.transition_to(SessionState.FAILED)
        self.failure_reason = reason
        self.cooldown_until = None
        self.finished_at = now

    def cancel(self, now: datetime) -> None:
        self.transition_to(SessionState.CANCELLED)
        self.cooldown_until = None
        self.finished_at = now

    def is_expired(self, now: datetime, retention_seconds: float) -> bool:
        if not self.is_terminal or self.finished_at is None:
            return False
        return now >= self.finished_at + timedelta(seconds=retention_seconds)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            trip_id=self.trip_id,
            state=self.state,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            created_at=self.created_at,
            last_attempt_at=self.last_attempt_at,
            cooldown_until=self.cooldown_until,
            finished_at=self.finished_at,
            failure_reason=self.failure_reason,
            matched_driver_id=self.matched_driver_id,
        )
