"""
Geo math for trip telemetry.

Pure functions: great-circle distance and speed plausibility checks.
"""

import math

from trip_telemetry.app.schemas.telemetry import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    # Clamp: rounding can push a marginally above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def coordinate_distance(start: Coordinate, end: Coordinate) -> float:
    """Haversine distance between two Coordinate values, in kilometers."""
    return haversine_distance(start.latitude, start.longitude, end.latitude, end.longitude)


def implied_speed_kmh(distance_km: float, elapsed_seconds: float) -> float:
    """
    Speed needed to cover distance_km in elapsed_seconds.

    A positive distance over zero (or negative) time is infinitely fast;
    no movement is speed zero whatever the elapsed time.
    """
    if distance_km <= 0:
        return 0.0
    if elapsed_seconds <= 0:
        return math.inf
    return distance_km / (elapsed_seconds / 3600.0)


def whole_minutes(seconds: float) -> int:
    """Seconds to minutes, rounded half up, never below 1."""
    return max(1, int(math.floor(seconds / 60.0 + 0.5)))


def is_sensor_jump(
    distance_km: float,
    elapsed_seconds: float,
    short_interval_seconds: float,
    max_speed_kmh: float,
) -> bool:
    """
    True for a near-instantaneous teleport.

    Large distances are fine when enough time passed to explain them; only
    short intervals with an implausible implied speed count as jumps.
    """
    if elapsed_seconds >= short_interval_seconds:
        return False
    return implied_speed_kmh(distance_km, elapsed_seconds) > max_speed_kmh
