import os

# Keep ambient environment from leaking into settings under test.
for _name in list(os.environ):
    if _name.startswith(("MATCHING_", "GEO_SERVICE_", "LOG_")):
        del os.environ[_name]

import pytest

from rider_matching.geo.driver_index import DriverGeospatialIndex
from rider_matching.matching.models import CandidateDriver, DriverAvailability
from rider_matching.settings import MatchingSettings
from tests.factories import FakeLocator, make_candidate


@pytest.fixture
def matching_settings() -> MatchingSettings:
    """Short cooldowns and a single lookup radius per attempt."""
    return MatchingSettings(retry_delay_ms=10, max_attempts=3, initial_search_radius_km=10.0)


@pytest.fixture
def scenario_candidates() -> list[CandidateDriver]:
    """Three drivers around lower Manhattan; only the two sedans are online."""
    lat, lng = 40.7128, -74.0060
    return [
        make_candidate("driver-a", lat + 0.01, lng + 0.01, rating=4.8),
        make_candidate("driver-b", lat - 0.005, lng + 0.015, rating=4.6),
        make_candidate(
            "driver-c",
            lat + 0.02,
            lng - 0.01,
            rating=4.9,
            vehicle_type="suv",
            availability=DriverAvailability.BUSY,
        ),
    ]


@pytest.fixture
def empty_locator() -> FakeLocator:
    return FakeLocator(responses=[[]])


@pytest.fixture
def driver_index() -> DriverGeospatialIndex:
    return DriverGeospatialIndex()
