"""Formatting utilities for display."""

from speedly.models import TripSummary
from speedly.units import SpeedUnit


def format_duration(seconds: float) -> str:
    """Format seconds as 'Xh Ym', 'Ym Zs' or 'Zs'."""
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_trip_summary(trip: TripSummary, unit: SpeedUnit) -> str:
    """Plain-text trip summary suitable for sharing."""
    max_speed = unit.convert_speed(trip.max_speed)
    avg_speed = unit.convert_speed(trip.average_speed)
    distance = unit.convert_distance(trip.distance)
    return "\n".join([
        "Speedly Trip Summary",
        "",
        f"Max Speed: {int(max_speed)} {unit.short_name}",
        f"Average Speed: {int(avg_speed)} {unit.short_name}",
        f"Distance: {distance:.2f} {unit.distance_unit}",
        f"Duration: {format_duration(trip.duration_seconds)}",
    ])
