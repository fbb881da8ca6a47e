"""Rider-to-driver matching engine."""

from rider_matching.matching.engine import MatchingEngine
from rider_matching.matching.models import (
    CandidateDriver,
    DriverAvailability,
    Location,
    MatchingOutcome,
    MatchingRequest,
    RiderPreferences,
)
from rider_matching.matching.session import SessionSnapshot, SessionState

__all__ = [
    "CandidateDriver",
    "DriverAvailability",
    "Location",
    "MatchingEngine",
    "MatchingOutcome",
    "MatchingRequest",
    "RiderPreferences",
    "SessionSnapshot",
    "SessionState",
]
