"""Request, candidate and outcome models for driver matching."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Location(BaseModel):
    """A lat/lng point. Range is checked by the selector, not here."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


class RiderPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_driver_rating: float = Field(default=0.0, ge=0.0, le=5.0)
    accessibility_needs: frozenset[str] = Field(default_factory=frozenset)
    allow_shared_rides: bool = False


class MatchingRequest(BaseModel):
    """A rider's trip request. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    trip_id: str = Field(min_length=1)
    rider_id: str
    pickup: Location
    destination: Location
    vehicle_type: str | None = None
    passenger_count: int = Field(default=1, ge=1)
    priority_level: int = Field(default=0, ge=0)
    max_wait_seconds: float | None = Field(default=None, gt=0)
    preferences: RiderPreferences | None = None
    requested_at: datetime | None = None


class DriverAvailability(str, Enum):
    ONLINE = "online"
    BUSY = "busy"
    OFFLINE = "offline"


class CandidateDriver(BaseModel):
    """Read-only snapshot of a driver as reported by the candidate locator."""

    model_config = ConfigDict(frozen=True)

    driver_id: str
    vehicle_id: str
    location: Location
    vehicle_type: str
    rating: float = Field(ge=0.0, le=5.0)
    availability: DriverAvailability
    updated_at: datetime | None = None
    capacity: int | None = Field(default=None, ge=1)
    features: frozenset[str] = Field(default_factory=frozenset)

    @property
    def is_online(self) -> bool:
        return self.availability == DriverAvailability.ONLINE


class ScoredCandidate(BaseModel):
    """A candidate with its distance to pickup and score for one attempt."""

    model_config = ConfigDict(frozen=True)

    candidate: CandidateDriver
    distance_km: float = Field(ge=0.0)
    score: float = Field(ge=0.0)

    @property
    def driver_id(self) -> str:
        return self.candidate.driver_id

    def sort_key(self) -> tuple[float, float, str]:
        # score desc, distance asc, driver_id asc
        return (-self.score, self.distance_km, self.candidate.driver_id)


class FareEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_fare: float = Field(ge=0)
    distance_fare: float = Field(ge=0)
    time_fare: float = Field(ge=0)
    surge_fare: float = Field(ge=0)
    total_estimate: float = Field(ge=0)
    currency: str = "USD"


class MatchedDriver(BaseModel):
    """Driver details attached to an outcome (winner or alternative)."""

    model_config = ConfigDict(frozen=True)

    driver_id: str
    vehicle_id: str
    vehicle_type: str
    rating: float
    location: Location
    distance_km: float
    eta_seconds: int
    score: float

    @classmethod
    def from_scored(cls, scored: ScoredCandidate, eta_seconds: int) -> "MatchedDriver":
        candidate = scored.candidate
        return cls(
            driver_id=candidate.driver_id,
            vehicle_id=candidate.vehicle_id,
            vehicle_type=candidate.vehicle_type,
            rating=candidate.rating,
            location=candidate.location,
            distance_km=scored.distance_km,
            eta_seconds=eta_seconds,
            score=scored.score,
        )


class MatchingOutcome(BaseModel):
    """Result of a find_match call. Expected "no driver" cases land here, not in exceptions."""

    model_config = ConfigDict(frozen=True)

    trip_id: str
    success: bool
    status: str
    matched_driver: MatchedDriver | None = None
    score: float = 0.0
    eta_seconds: int | None = None
    estimated_fare: FareEstimate | None = None
    alternatives: tuple[MatchedDriver, ...] = ()
    reason: str | None = None
    retry_count: int = 0
    processing_time_ms: float = 0.0

    @property
    def driver_id(self) -> str | None:
        return self.matched_driver.driver_id if self.matched_driver else None

    @property
    def vehicle_id(self) -> str | None:
        return self.matched_driver.vehicle_id if self.matched_driver else None
