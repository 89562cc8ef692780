"""Fast distance calculations between fixes.

Haversine is ~10x faster than geopy.geodesic and accurate enough at the
tens-of-meters scale the pipeline works with.
"""

from __future__ import annotations
import math

from speedly.units import METERS_TO_MILES

# Earth's mean radius in meters
EARTH_RADIUS_M = 6_371_000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points using Haversine formula.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_M * c


def distance_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance converted to miles, the trip's base distance unit."""
    return haversine_distance(lat1, lon1, lat2, lon2) * METERS_TO_MILES
