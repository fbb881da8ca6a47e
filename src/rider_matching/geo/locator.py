"""Interfaces for the geospatial collaborators the engine depends on."""

from typing import Protocol, runtime_checkable

from rider_matching.matching.models import CandidateDriver, Location


@runtime_checkable
class CandidateLocator(Protocol):
    """Returns nearby driver snapshots for a point and radius."""

    async def find_nearby_drivers(
        self, center: Location, radius_km: float, limit: int
    ) -> list[CandidateDriver]: ...


@runtime_checkable
class DistanceCalculator(Protocol):
    """Road distance and ETA provider, used to refine haversine estimates."""

    async def calculate_distance(self, origin: Location, destination: Location) -> float:
        """Distance in kilometers."""
        ...

    async def calculate_eta(self, origin: Location, destination: Location, mode: str) -> float:
        """Travel time in seconds."""
        ...
