"""Fare estimation collaborator attached to successful matches."""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from rider_matching.geo.distance import estimate_eta_seconds, haversine_distance_km
from rider_matching.matching.models import FareEstimate, MatchedDriver, MatchingRequest

if TYPE_CHECKING:
    from rider_matching.geo.locator import DistanceCalculator


@runtime_checkable
class FareEstimator(Protocol):
    async def estimate_fare(
        self, request: MatchingRequest, driver: MatchedDriver
    ) -> FareEstimate: ...


class LocalFareEstimator:
    """Calculates trip fares from pickup-to-destination distance and duration.

    With a distance calculator wired, trip distance and duration come from it
    (the driver's vehicle type is the routing mode). Without one, distance is
    haversine and duration assumes a constant ``speed_kmh``.

    Priority levels start at 0 for a standard ride, so every level above 0
    pays the surge. This is the same threshold the scorer uses for its
    proximity boost.
    """

    BASE_FARE = 3.00
    PER_KM_RATE = 1.50
    PER_MIN_RATE = 0.25
    PRIORITY_SURGE_RATE = 0.5
    CURRENCY = "USD"

    def __init__(
        self,
        speed_kmh: float = 30.0,
        distance_calculator: "DistanceCalculator | None" = None,
    ) -> None:
        self.speed_kmh = speed_kmh
        self._distance_calculator = distance_calculator

    def calculate(
        self, distance_km: float, duration_min: float, priority_level: int = 0
    ) -> FareEstimate:
        if distance_km < 0:
            raise ValueError("Distance must be non-negative")
        if duration_min < 0:
            raise ValueError("Duration must be non-negative")

        base_fare = self.BASE_FARE
        distance_fare = distance_km * self.PER_KM_RATE
        time_fare = duration_min * self.PER_MIN_RATE
        subtotal = base_fare + distance_fare + time_fare
        surge_fare = subtotal * self.PRIORITY_SURGE_RATE if priority_level > 0 else 0.0

        return FareEstimate(
            base_fare=base_fare,
            distance_fare=distance_fare,
            time_fare=time_fare,
            surge_fare=surge_fare,
            total_estimate=subtotal + surge_fare,
            currency=self.CURRENCY,
        )

    async def estimate_fare(
        self, request: MatchingRequest, driver: MatchedDriver
    ) -> FareEstimate:
        pickup, destination = request.pickup, request.destination
        if self._distance_calculator is not None:
            distance_km = await self._distance_calculator.calculate_distance(pickup, destination)
            duration_s = await self._distance_calculator.calculate_eta(
                pickup, destination, driver.vehicle_type
            )
        else:
            distance_km = haversine_distance_km(
                pickup.lat, pickup.lng, destination.lat, destination.lng
            )
            duration_s = estimate_eta_seconds(distance_km, self.speed_kmh)
        return self.calculate(distance_km, duration_s / 60, request.priority_level)
