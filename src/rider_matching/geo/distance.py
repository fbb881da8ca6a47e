"""Centralized geographic distance calculations.

This module provides Haversine distance calculations used to measure how far
a candidate driver is from the rider's pickup point and to derive fallback
pickup ETAs when no routing service is available.
"""

from math import atan2, cos, isfinite, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers.

    Uses the Haversine formula to calculate the shortest distance over
    the Earth's surface between two points specified by latitude/longitude.
    The result is symmetric in its arguments and zero for identical points.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in kilometers
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push a marginally above 1.0 for antipodal points
    a = min(1.0, a)
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """True when lat is in [-90, 90] and lon in [-180, 180] (NaN is invalid)."""
    if not (isfinite(lat) and isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def estimate_eta_seconds(distance_km: float, speed_kmh: float) -> int:
    """Straight-line travel time at a constant speed, rounded to whole seconds."""
    if speed_kmh <= 0:
        raise ValueError("speed_kmh must be positive")
    return round(distance_km / speed_kmh * 3600)
