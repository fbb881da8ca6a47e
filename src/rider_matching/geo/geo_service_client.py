"""HTTP client for the platform geo service.

Implements both CandidateLocator and DistanceCalculator. Transport problems
are surfaced as UpstreamUnavailableError; the client never retries on its own,
the caller decides whether to resubmit the trip.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from rider_matching.core.exceptions import UpstreamUnavailableError
from rider_matching.matching.models import (
    CandidateDriver,
    DriverAvailability,
    Location,
)

logger = logging.getLogger(__name__)

# Geo service reports "available" for drivers the matching engine calls online
_STATUS_ALIASES = {
    "available": DriverAvailability.ONLINE,
    "online": DriverAvailability.ONLINE,
    "busy": DriverAvailability.BUSY,
    "on_trip": DriverAvailability.BUSY,
    "en_route_pickup": DriverAvailability.BUSY,
    "offline": DriverAvailability.OFFLINE,
}


class NearbyDriverPayload(BaseModel):
    driver_id: str
    vehicle_id: str
    location: Location
    distance_from_center: float | None = None
    status: str
    vehicle_type: str
    rating: float
    capacity: int | None = None
    features: list[str] = []

    def to_candidate(self) -> CandidateDriver:
        return CandidateDriver(
            driver_id=self.driver_id,
            vehicle_id=self.vehicle_id,
            location=self.location,
            vehicle_type=self.vehicle_type,
            rating=self.rating,
            availability=_STATUS_ALIASES.get(self.status.lower(), DriverAvailability.OFFLINE),
            capacity=self.capacity,
            features=frozenset(self.features),
        )


class DistancePayload(BaseModel):
    distance_meters: float
    distance_km: float


class ETAPayload(BaseModel):
    duration_seconds: float
    distance_meters: float | None = None


def _point(location: Location) -> dict[str, float]:
    return {"lat": location.lat, "lng": location.lng}


class GeoServiceClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def find_nearby_drivers(
        self, center: Location, radius_km: float, limit: int
    ) -> list[CandidateDriver]:
        data = await self._post(
            "/api/v1/geo/nearby-drivers",
            {"center": _point(center), "radius_km": radius_km, "limit": limit},
        )
        try:
            drivers = [NearbyDriverPayload.model_validate(d) for d in data.get("drivers", [])]
        except PydanticValidationError as e:
            raise UpstreamUnavailableError(f"Malformed nearby-drivers response: {e}") from e
        return [d.to_candidate() for d in drivers]

    async def calculate_distance(self, origin: Location, destination: Location) -> float:
        data = await self._post(
            "/api/v1/geo/distance",
            {"origin": _point(origin), "destination": _point(destination)},
        )
        try:
            return DistancePayload.model_validate(data["distance"]).distance_km
        except (KeyError, PydanticValidationError) as e:
            raise UpstreamUnavailableError(f"Malformed distance response: {e}") from e

    async def calculate_eta(self, origin: Location, destination: Location, mode: str) -> float:
        data = await self._post(
            "/api/v1/geo/eta",
            {"origin": _point(origin), "destination": _point(destination), "mode": mode},
        )
        try:
            return ETAPayload.model_validate(data["eta"]).duration_seconds
        except (KeyError, PydanticValidationError) as e:
            raise UpstreamUnavailableError(f"Malformed ETA response: {e}") from e

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(
                f"Geo service timed out after {self.timeout}s", details={"path": path}
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(
                f"Geo service network error: {e}", details={"path": path}
            ) from e

        if response.status_code >= 400:
            logger.warning("Geo service %s returned %s", path, response.status_code)
            raise UpstreamUnavailableError(
                f"Geo service error: {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(f"Geo service returned invalid JSON: {e}") from e
        return data
