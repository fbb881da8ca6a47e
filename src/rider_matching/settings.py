from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rider_matching.core.exceptions import ConfigurationError


class MatchingSettings(BaseSettings):
    """Driver scoring, selection and retry configuration."""

    max_search_radius_km: float = Field(default=10.0, gt=0.0, le=100.0)
    initial_search_radius_km: float = Field(
        default=5.0,
        gt=0.0,
        description="First lookup radius; widened by radius_step_km up to max_search_radius_km",
    )
    radius_step_km: float = Field(default=5.0, gt=0.0)
    min_candidates: int = Field(
        default=5,
        ge=1,
        description="Stop widening the search once this many drivers come back",
    )
    max_drivers_to_consider: int = Field(default=20, ge=1, le=500)
    priority_boost_radius_km: float = Field(default=2.0, ge=0.0)
    premium_priority_boost: float = Field(default=1.5, ge=1.0, le=5.0)

    distance_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    rating_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    availability_weight: float = Field(default=0.3, ge=0.0, le=1.0)

    max_attempts: int = Field(default=3, ge=1, le=20)
    retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        le=60_000,
        description="Cooldown between consecutive matching attempts for the same trip",
    )
    retry_backoff_multiplier: float = Field(
        default=1.0,
        ge=1.0,
        le=5.0,
        description="1.0 keeps the cooldown fixed; >1.0 grows it exponentially per attempt",
    )
    max_retry_delay_ms: int = Field(default=30_000, ge=0)

    max_alternatives: int = Field(default=3, ge=0, le=10)
    fallback_speed_kmh: float = Field(
        default=30.0,
        gt=0.0,
        description="Speed used to estimate pickup ETA when no distance calculator is wired",
    )
    session_retention_seconds: int = Field(
        default=300,
        ge=0,
        description="How long terminal sessions stay queryable before eviction",
    )
    reservation_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="How long a matched driver stays held for its trip",
    )
    delegate_distance: bool = Field(
        default=False,
        description="Ask the distance calculator for candidate distances instead of haversine",
    )

    model_config = SettingsConfigDict(env_prefix="MATCHING_")

    def __init__(self, **data: Any) -> None:
        super().__init__(**data)
        weights_sum = self.distance_weight + self.rating_weight + self.availability_weight
        if not (0.99 <= weights_sum <= 1.01):
            raise ValueError(
                f"Scoring weights must sum to 1.0, got {weights_sum}. "
                f"(Distance: {self.distance_weight}, Rating: {self.rating_weight}, "
                f"Availability: {self.availability_weight})"
            )


class GeoServiceSettings(BaseSettings):
    base_url: str = "http://localhost:8083"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)

    model_config = SettingsConfigDict(env_prefix="GEO_SERVICE_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Geo service base URL must start with http:// or https://")
        return v.rstrip("/")


class LoggingSettings(BaseSettings):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Settings(BaseSettings):
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    geo_service: GeoServiceSettings = Field(default_factory=GeoServiceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables.

    Raises:
        ConfigurationError: an environment value is missing or out of range.
    """
    try:
        return Settings()
    except ValueError as e:
        raise ConfigurationError(f"Invalid matching configuration: {e}") from e
