"""
Great-circle geometry helpers.

Straight-line (Haversine) distance is used for driver discovery, geofence
classification and the synthetic navigation fallback.  Road distances come
from the routing provider when one is configured.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0

COMPASS_LABELS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def haversine_m(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **metres** between two points."""
    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0


def initial_bearing(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Initial great-circle bearing from point 1 to point 2, in [0, 360)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)

    y = math.sin(dlng) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(
        phi2
    ) * math.cos(dlng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def compass_label(bearing: float) -> str:
    """Map a bearing in degrees to one of the 8 compass points."""
    return COMPASS_LABELS[int(math.floor(bearing / 45.0 + 0.5)) % 8]


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
