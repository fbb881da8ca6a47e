"""Standardized exception hierarchy for the matching engine."""

from typing import Any


class MatchingError(Exception):
    """Base exception for all matching errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(MatchingError):
    """Errors that may succeed if the caller resubmits the request."""

    pass


class UpstreamUnavailableError(TransientError):
    """Candidate locator, distance calculator or other collaborator failed."""

    pass


class PermanentError(MatchingError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class InvalidCoordinatesError(ValidationError):
    """Latitude or longitude outside the valid range."""

    pass


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class SessionNotFoundError(NotFoundError):
    """No matching session is tracked for the trip id."""

    pass


class StateError(PermanentError):
    """Invalid state transition."""

    pass


class InvalidTransitionError(StateError):
    """Transition not allowed from the current state."""

    pass


class AlreadyTerminalError(StateError):
    """Session already reached matched, failed or cancelled."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass
