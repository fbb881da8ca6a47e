"""Wiring of the matching engine from settings."""

import logging
from typing import TYPE_CHECKING

from rider_matching.geo.geo_service_client import GeoServiceClient
from rider_matching.match_logging import setup_logging
from rider_matching.matching.engine import MatchingEngine
from rider_matching.pricing.fare import LocalFareEstimator
from rider_matching.settings import Settings, get_settings

if TYPE_CHECKING:
    from rider_matching.geo.locator import CandidateLocator, DistanceCalculator
    from rider_matching.pricing.fare import FareEstimator

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    setup_logging(
        level=settings.logging.level,
        json_output=settings.logging.format == "json",
        environment=settings.logging.environment,
    )


def create_matching_engine(
    settings: Settings | None = None,
    locator: "CandidateLocator | None" = None,
    distance_calculator: "DistanceCalculator | None" = None,
    fare_estimator: "FareEstimator | None" = None,
) -> MatchingEngine:
    """Build an engine, defaulting collaborators to the remote geo service.

    When no locator is given, a GeoServiceClient pointed at
    ``settings.geo_service.base_url`` serves as both locator and distance
    calculator. Fares fall back to LocalFareEstimator, priced over the same
    distance calculator when one is wired.
    """
    settings = settings or get_settings()

    if locator is None:
        client = GeoServiceClient(
            settings.geo_service.base_url, timeout=settings.geo_service.timeout_seconds
        )
        locator = client
        distance_calculator = distance_calculator or client
        logger.info("Geo service client configured: %s", settings.geo_service.base_url)

    if fare_estimator is None:
        fare_estimator = LocalFareEstimator(
            speed_kmh=settings.matching.fallback_speed_kmh,
            distance_calculator=distance_calculator,
        )

    return MatchingEngine(
        locator=locator,
        distance_calculator=distance_calculator,
        fare_estimator=fare_estimator,
        settings=settings.matching,
    )
