import itertools
import math
from unittest.mock import Mock

import pytest

from rider_matching.core.exceptions import InvalidCoordinatesError
from rider_matching.matching.models import (
    CandidateDriver,
    DriverAvailability,
    Location,
    RiderPreferences,
)
from rider_matching.matching.selector import (
    NO_DRIVERS_AVAILABLE,
    MatchSelector,
    NoMatchFound,
    SelectionResult,
    candidate_distance_km,
    validate_request_coordinates,
)
from tests.factories import make_candidate, make_request


@pytest.fixture
def selector() -> MatchSelector:
    return MatchSelector()


@pytest.mark.unit
class TestSelectWinner:
    def test_higher_score_beats_nearer_driver(
        self, selector: MatchSelector, scenario_candidates: list[CandidateDriver]
    ):
        result = selector.select(scenario_candidates, make_request())

        assert isinstance(result, SelectionResult)
        assert result.winner.driver_id == "driver-a"
        assert [s.driver_id for s in result.ranked] == ["driver-a", "driver-b"]
        assert result.winner.score == pytest.approx(0.932, abs=1e-3)
        assert result.ranked[1].score == pytest.approx(0.921, abs=1e-3)
        assert result.ranked[1].distance_km < result.winner.distance_km

    def test_empty_candidates(self, selector: MatchSelector):
        result = selector.select([], make_request())

        assert isinstance(result, NoMatchFound)
        assert result.reason == NO_DRIVERS_AVAILABLE
        assert result.considered == 0

    def test_only_ineligible_candidates(self, selector: MatchSelector):
        candidates = [
            make_candidate("busy", availability=DriverAvailability.BUSY),
            make_candidate("offline", availability=DriverAvailability.OFFLINE),
            make_candidate("suv", vehicle_type="suv"),
        ]

        result = selector.select(candidates, make_request())

        assert isinstance(result, NoMatchFound)
        assert result.considered == 3

    def test_far_candidate_loses_on_distance_score(self, selector: MatchSelector):
        # Roughly 20km north of pickup: distance score zero, still eligible
        far = make_candidate("far", 40.7128 + 0.18, -74.0060, rating=5.0)
        near = make_candidate("near", 40.7138, -74.0060, rating=3.0)

        result = selector.select([far, near], make_request())

        assert result.winner.driver_id == "near"

    def test_uses_precomputed_distances(self, selector: MatchSelector):
        a = make_candidate("a", 40.7228, -74.0060)
        b = make_candidate("b", 40.7138, -74.0060)

        result = selector.select([a, b], make_request(), distances={"a": 0.1, "b": 5.0})

        assert result.winner.driver_id == "a"
        assert result.winner.distance_km == 0.1

    def test_missing_precomputed_distance_falls_back_to_haversine(self, selector: MatchSelector):
        a = make_candidate("a", 40.7138, -74.0060)
        request = make_request()

        result = selector.select([a], request, distances={})

        assert result.winner.distance_km == pytest.approx(
            candidate_distance_km(a, request.pickup)
        )


@pytest.mark.unit
class TestTieBreaking:
    def test_equal_score_prefers_nearer_driver(self):
        scoring = Mock()
        scoring.score.return_value = 0.8
        selector = MatchSelector(scoring)
        nearer = make_candidate("z-nearer", 40.7138, -74.0060)
        farther = make_candidate("a-farther", 40.7228, -74.0060)

        result = selector.select([farther, nearer], make_request())

        assert [s.driver_id for s in result.ranked] == ["z-nearer", "a-farther"]

    def test_equal_score_and_distance_prefers_lower_driver_id(self):
        scoring = Mock()
        scoring.score.return_value = 0.8
        selector = MatchSelector(scoring)
        candidates = [
            make_candidate("driver-2", 40.7138, -74.0060),
            make_candidate("driver-1", 40.7138, -74.0060),
        ]

        result = selector.select(candidates, make_request())

        assert result.winner.driver_id == "driver-1"

    def test_zero_scores_are_dropped(self):
        scoring = Mock()
        scoring.score.return_value = 0.0
        selector = MatchSelector(scoring)

        result = selector.select([make_candidate("d1")], make_request())

        assert isinstance(result, NoMatchFound)

    def test_result_independent_of_candidate_order(self, selector: MatchSelector):
        candidates = [
            make_candidate("d1", 40.7138, -74.0060, rating=4.5),
            make_candidate("d2", 40.7138, -74.0060, rating=4.5),
            make_candidate("d3", 40.7150, -74.0050, rating=4.9),
            make_candidate("d4", 40.7100, -74.0100, rating=4.2),
        ]
        request = make_request()

        rankings = {
            tuple(s.driver_id for s in selector.select(list(order), request).ranked)
            for order in itertools.permutations(candidates)
        }

        assert len(rankings) == 1


@pytest.mark.unit
class TestEligibility:
    def test_vehicle_type_filter(self, selector: MatchSelector):
        suv = make_candidate("suv", vehicle_type="suv")

        assert not selector.is_eligible(suv, make_request(vehicle_type="sedan"))
        assert selector.is_eligible(suv, make_request(vehicle_type="suv"))

    def test_no_vehicle_type_accepts_any(self, selector: MatchSelector):
        suv = make_candidate("suv", vehicle_type="suv")

        assert selector.is_eligible(suv, make_request(vehicle_type=None))

    def test_capacity_filter(self, selector: MatchSelector):
        small = make_candidate("small", capacity=3)

        assert not selector.is_eligible(small, make_request(passenger_count=4))
        assert selector.is_eligible(small, make_request(passenger_count=3))

    def test_unknown_capacity_is_eligible(self, selector: MatchSelector):
        assert selector.is_eligible(make_candidate("d1"), make_request(passenger_count=4))

    def test_min_rating_preference(self, selector: MatchSelector):
        request = make_request(preferences=RiderPreferences(min_driver_rating=4.7))

        assert not selector.is_eligible(make_candidate("low", rating=4.5), request)
        assert selector.is_eligible(make_candidate("high", rating=4.8), request)

    def test_accessibility_needs(self, selector: MatchSelector):
        request = make_request(
            preferences=RiderPreferences(accessibility_needs=frozenset({"wheelchair"}))
        )

        assert not selector.is_eligible(make_candidate("plain"), request)
        assert selector.is_eligible(
            make_candidate("ramp", features=frozenset({"wheelchair", "child_seat"})), request
        )

    def test_filter_candidates(
        self, selector: MatchSelector, scenario_candidates: list[CandidateDriver]
    ):
        eligible = selector.filter_candidates(scenario_candidates, make_request())

        assert [c.driver_id for c in eligible] == ["driver-a", "driver-b"]


@pytest.mark.unit
class TestCoordinateValidation:
    def test_valid_request_passes(self):
        validate_request_coordinates(make_request())

    def test_invalid_pickup(self, selector: MatchSelector):
        request = make_request(pickup=(91.0, -74.0))

        with pytest.raises(InvalidCoordinatesError) as exc_info:
            selector.select([make_candidate("d1")], request)

        assert "pickup" in exc_info.value.details
        assert "destination" not in exc_info.value.details

    def test_invalid_destination(self):
        request = make_request(destination=(40.0, -181.0))

        with pytest.raises(InvalidCoordinatesError, match="destination"):
            validate_request_coordinates(request)

    def test_nan_coordinates(self):
        request = make_request(pickup=(math.nan, -74.0))

        with pytest.raises(InvalidCoordinatesError):
            validate_request_coordinates(request)

    def test_candidate_distance_zero_at_pickup(self):
        candidate = make_candidate("d1", 40.7128, -74.0060)

        assert candidate_distance_km(candidate, Location(lat=40.7128, lng=-74.0060)) == 0.0
