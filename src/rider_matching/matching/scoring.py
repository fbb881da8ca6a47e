from rider_matching.matching.models import CandidateDriver, MatchingRequest
from rider_matching.settings import MatchingSettings


class ScoringEngine:
    """Weighted distance/rating/availability score for a single candidate.

    Pure function of its inputs: no randomness and no clock reads, so the same
    candidate, request and distance always produce the same score.
    """

    def __init__(self, settings: MatchingSettings | None = None) -> None:
        settings = settings or MatchingSettings()
        self._max_radius_km = settings.max_search_radius_km
        self._boost_radius_km = settings.priority_boost_radius_km
        self._priority_boost = settings.premium_priority_boost
        self._distance_weight = settings.distance_weight
        self._rating_weight = settings.rating_weight
        self._availability_weight = settings.availability_weight

    def score(
        self,
        candidate: CandidateDriver,
        request: MatchingRequest,
        distance_km: float,
    ) -> float:
        if not candidate.is_online:
            return 0.0

        distance_score = max(0.0, 1.0 - distance_km / self._max_radius_km)
        rating_score = candidate.rating / 5.0
        availability_score = 1.0

        base = (
            self._distance_weight * distance_score
            + self._rating_weight * rating_score
            + self._availability_weight * availability_score
        )

        if request.priority_level > 0 and distance_km <= self._boost_radius_km:
            base *= self._priority_boost

        return max(0.0, base)
