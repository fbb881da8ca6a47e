import threading
from datetime import UTC, datetime

import h3

from rider_matching.geo.distance import haversine_distance_km
from rider_matching.matching.models import (
    CandidateDriver,
    DriverAvailability,
    Location,
)


class DriverGeospatialIndex:
    """Spatial index of driver snapshots using H3 hexagonal cells.

    Implements the CandidateLocator interface so the engine can run without
    the remote geo service.
    """

    def __init__(self, h3_resolution: int = 9):
        self._h3_resolution = h3_resolution
        self._h3_cells: dict[str, set[str]] = {}
        self._drivers: dict[str, CandidateDriver] = {}
        self._driver_cells: dict[str, str] = {}
        self._lock = threading.Lock()

    def upsert_driver(self, driver: CandidateDriver) -> None:
        with self._lock:
            new_cell = self._get_h3_cell(driver.location.lat, driver.location.lng)
            old_cell = self._driver_cells.get(driver.driver_id)

            if old_cell is not None and old_cell != new_cell:
                self._discard_from_cell(old_cell, driver.driver_id)

            self._h3_cells.setdefault(new_cell, set()).add(driver.driver_id)
            self._driver_cells[driver.driver_id] = new_cell
            self._drivers[driver.driver_id] = driver

    def update_driver_location(self, driver_id: str, lat: float, lng: float) -> None:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                return

            old_cell = self._driver_cells[driver_id]
            new_cell = self._get_h3_cell(lat, lng)
            if old_cell != new_cell:
                self._discard_from_cell(old_cell, driver_id)
                self._h3_cells.setdefault(new_cell, set()).add(driver_id)
                self._driver_cells[driver_id] = new_cell

            self._drivers[driver_id] = driver.model_copy(
                update={"location": Location(lat=lat, lng=lng), "updated_at": datetime.now(UTC)}
            )

    def update_driver_status(self, driver_id: str, availability: DriverAvailability) -> None:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is not None:
                self._drivers[driver_id] = driver.model_copy(
                    update={"availability": availability, "updated_at": datetime.now(UTC)}
                )

    def remove_driver(self, driver_id: str) -> None:
        with self._lock:
            if driver_id not in self._drivers:
                return
            self._discard_from_cell(self._driver_cells.pop(driver_id), driver_id)
            del self._drivers[driver_id]

    def get_driver(self, driver_id: str) -> CandidateDriver | None:
        with self._lock:
            return self._drivers.get(driver_id)

    def find_nearest_drivers(
        self,
        lat: float,
        lng: float,
        radius_km: float = 5.0,
        limit: int | None = None,
    ) -> list[tuple[CandidateDriver, float]]:
        """Drivers within radius_km of the point, nearest first.

        All availabilities are returned; filtering is the selector's job.
        """
        with self._lock:
            if not self._drivers:
                return []

            center_cell = self._get_h3_cell(lat, lng)
            # Maximum k rings for full radius coverage at resolution 9 (~174m edge)
            max_k = max(1, int(radius_km * 1000 / 174) + 1)

            candidates: list[tuple[CandidateDriver, float]] = []
            for cell in h3.grid_disk(center_cell, max_k):
                for driver_id in self._h3_cells.get(cell, ()):
                    driver = self._drivers[driver_id]
                    distance = haversine_distance_km(
                        lat, lng, driver.location.lat, driver.location.lng
                    )
                    if distance <= radius_km:
                        candidates.append((driver, distance))

        candidates.sort(key=lambda x: (x[1], x[0].driver_id))
        if limit is not None:
            candidates = candidates[:limit]
        return candidates

    async def find_nearby_drivers(
        self, center: Location, radius_km: float, limit: int
    ) -> list[CandidateDriver]:
        return [
            driver
            for driver, _ in self.find_nearest_drivers(center.lat, center.lng, radius_km, limit)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._drivers)

    def _discard_from_cell(self, cell: str, driver_id: str) -> None:
        # Must be called under _lock
        members = self._h3_cells.get(cell)
        if members is None:
            return
        members.discard(driver_id)
        if not members:
            del self._h3_cells[cell]

    def _get_h3_cell(self, lat: float, lng: float) -> str:
        return h3.latlng_to_cell(lat, lng, self._h3_resolution)

    def clear(self) -> None:
        """Clear all index state."""
        with self._lock:
            self._h3_cells.clear()
            self._drivers.clear()
            self._driver_cells.clear()
