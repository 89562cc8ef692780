"""Rate and distance gating for remote lookups.

Each enrichment kind owns its own gate so a speed-limit query never resets
the geocoder's timer and vice versa.
"""

from dataclasses import dataclass
from datetime import datetime

from speedly.distance import haversine_distance
from speedly.models import LocationFix


@dataclass
class ThrottleState:
    last_query_time: datetime | None = None
    last_query_location: tuple[float, float] | None = None  # (lat, lon)


class ThrottleGate:
    """Allows a query only when enough time has passed, the fix has moved far
    enough from the last queried position, and the fix is accurate enough."""

    def __init__(self, min_interval_s: float, min_distance_m: float, accuracy_ceiling_m: float):
        if min_interval_s < 0 or min_distance_m < 0:
            raise ValueError("Throttle interval and distance must be non-negative")
        self.min_interval_s = min_interval_s
        self.min_distance_m = min_distance_m
        self.accuracy_ceiling_m = accuracy_ceiling_m
        self.state = ThrottleState()

    def should_proceed(self, now: datetime, location: LocationFix, accuracy_m: float) -> bool:
        state = self.state
        if state.last_query_time is not None:
            elapsed = (now - state.last_query_time).total_seconds()
            if elapsed < self.min_interval_s:
                return False

        if state.last_query_location is not None:
            last_lat, last_lon = state.last_query_location
            moved = haversine_distance(last_lat, last_lon, location.latitude, location.longitude)
            if moved < self.min_distance_m:
                return False

        # Platform reports negative accuracy for an invalid fix
        if accuracy_m < 0:
            return False
        return accuracy_m < self.accuracy_ceiling_m

    def record_attempt(self, now: datetime, location: LocationFix) -> None:
        """Mark that a query was actually issued for this fix."""
        self.state = ThrottleState(
            last_query_time=now,
            last_query_location=(location.latitude, location.longitude),
        )


def speed_limit_gate() -> ThrottleGate:
    """Gate for speed-limit lookups: every 10 s, 100 m apart, accuracy under 50 m."""
    return ThrottleGate(min_interval_s=10.0, min_distance_m=100.0, accuracy_ceiling_m=50.0)


def geocode_gate() -> ThrottleGate:
    """Gate for reverse geocoding: every 5 s, 50 m apart, accuracy under 100 m."""
    return ThrottleGate(min_interval_s=5.0, min_distance_m=50.0, accuracy_ceiling_m=100.0)
