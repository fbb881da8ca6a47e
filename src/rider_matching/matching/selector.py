"""Candidate filtering, scoring and deterministic winner selection."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from rider_matching.core.exceptions import InvalidCoordinatesError
from rider_matching.geo.distance import haversine_distance_km, is_valid_coordinate
from rider_matching.matching.models import (
    CandidateDriver,
    Location,
    MatchingRequest,
    ScoredCandidate,
)
from rider_matching.matching.scoring import ScoringEngine

logger = logging.getLogger(__name__)

NO_DRIVERS_AVAILABLE = "no drivers available"


@dataclass(frozen=True)
class SelectionResult:
    winner: ScoredCandidate
    ranked: tuple[ScoredCandidate, ...]


@dataclass(frozen=True)
class NoMatchFound:
    """Defined negative outcome of an attempt; drives the retry loop."""

    reason: str = NO_DRIVERS_AVAILABLE
    considered: int = 0


def validate_request_coordinates(request: MatchingRequest) -> None:
    """Raise InvalidCoordinatesError if pickup or destination is out of range."""
    invalid = {
        name: location
        for name, location in (("pickup", request.pickup), ("destination", request.destination))
        if not is_valid_coordinate(location.lat, location.lng)
    }
    if invalid:
        details = {name: {"lat": loc.lat, "lng": loc.lng} for name, loc in invalid.items()}
        raise InvalidCoordinatesError(
            f"invalid coordinates for {', '.join(invalid)}",
            details={"trip_id": request.trip_id, **details},
        )


def candidate_distance_km(candidate: CandidateDriver, pickup: Location) -> float:
    return haversine_distance_km(
        candidate.location.lat, candidate.location.lng, pickup.lat, pickup.lng
    )


class MatchSelector:
    """Picks the best driver for a request out of a candidate snapshot."""

    def __init__(self, scoring_engine: ScoringEngine | None = None) -> None:
        self._scoring = scoring_engine or ScoringEngine()

    def is_eligible(self, candidate: CandidateDriver, request: MatchingRequest) -> bool:
        if not candidate.is_online:
            return False
        if request.vehicle_type and candidate.vehicle_type != request.vehicle_type:
            return False
        if candidate.capacity is not None and candidate.capacity < request.passenger_count:
            return False

        preferences = request.preferences
        if preferences is not None:
            if candidate.rating < preferences.min_driver_rating:
                return False
            if not preferences.accessibility_needs <= candidate.features:
                return False
        return True

    def filter_candidates(
        self,
        candidates: Iterable[CandidateDriver],
        request: MatchingRequest,
    ) -> list[CandidateDriver]:
        return [c for c in candidates if self.is_eligible(c, request)]

    def select(
        self,
        candidates: Iterable[CandidateDriver],
        request: MatchingRequest,
        distances: Mapping[str, float] | None = None,
    ) -> SelectionResult | NoMatchFound:
        """Filter, score and rank candidates.

        Args:
            candidates: Driver snapshots returned by the locator.
            request: The trip request being matched.
            distances: Optional precomputed driver_id -> km distances. Drivers
                missing from the mapping fall back to haversine.

        Returns:
            SelectionResult with the winner and full ranking, or NoMatchFound.
        """
        validate_request_coordinates(request)

        candidates = list(candidates)
        eligible = self.filter_candidates(candidates, request)

        scored: list[ScoredCandidate] = []
        for candidate in eligible:
            if distances is not None and candidate.driver_id in distances:
                distance_km = distances[candidate.driver_id]
            else:
                distance_km = candidate_distance_km(candidate, request.pickup)

            score = self._scoring.score(candidate, request, distance_km)
            if score <= 0.0:
                continue
            scored.append(ScoredCandidate(candidate=candidate, distance_km=distance_km, score=score))

        logger.debug(
            "Selection for trip %s: %d candidates, %d eligible, %d scored",
            request.trip_id,
            len(candidates),
            len(eligible),
            len(scored),
        )

        if not scored:
            return NoMatchFound(considered=len(candidates))

        scored.sort(key=ScoredCandidate.sort_key)
        return SelectionResult(winner=scored[0], ranked=tuple(scored))
