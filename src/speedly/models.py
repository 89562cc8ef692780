from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from speedly.units import SpeedUnit, convert_limit


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    horizontal_accuracy_m: float  # meters; negative means invalid
    speed_accuracy: float  # m/s; negative means invalid
    speed_mps: float  # m/s; negative means no valid speed
    timestamp: datetime


class QualityTier(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AccuracyReport:
    horizontal_accuracy_m: float
    speed_accuracy: float
    tier: QualityTier

    @property
    def description(self) -> str:
        if self.tier is QualityTier.UNAVAILABLE:
            return "No Signal"
        return f"{self.tier.value.capitalize()} ({int(self.horizontal_accuracy_m)}m)"


class SpeedLimitSource(Enum):
    REMOTE_LOOKUP = "remote_lookup"
    MANUAL_OVERRIDE = "manual_override"
    ESTIMATED = "estimated"


@dataclass(frozen=True)
class SpeedLimitRecord:
    limit: int
    source: SpeedLimitSource
    confidence: float  # 0.0 - 1.0, informational only
    detected_at: datetime
    reason: str | None = None  # why an estimate was used
    unit: SpeedUnit = SpeedUnit.METRIC  # unit the limit is expressed in

    @property
    def display_name(self) -> str:
        if self.source is SpeedLimitSource.REMOTE_LOOKUP:
            return "OpenStreetMap"
        if self.source is SpeedLimitSource.MANUAL_OVERRIDE:
            return "Manual"
        return f"Estimated ({self.reason})"

    def converted_limit(self, unit: SpeedUnit) -> int:
        return convert_limit(self.limit, self.unit, unit)


@dataclass(frozen=True)
class LocationInfo:
    street_name: str | None
    city_name: str | None
    country_code: str | None
    timestamp: datetime

    @property
    def display_address(self) -> str:
        parts = [p for p in (self.street_name, self.city_name) if p]
        return ", ".join(parts)


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    RESTRICTED = "restricted"
    AUTHORIZED_WHEN_IN_USE = "authorized_when_in_use"
    AUTHORIZED_ALWAYS = "authorized_always"

    @property
    def is_authorized(self) -> bool:
        return self in (AuthorizationStatus.AUTHORIZED_WHEN_IN_USE, AuthorizationStatus.AUTHORIZED_ALWAYS)

    @property
    def is_denied(self) -> bool:
        return self in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED)


@dataclass(frozen=True)
class TripSummary:
    start_time: datetime | None
    duration_seconds: float
    distance: float  # miles
    max_speed: float  # mph
    average_speed: float  # mph, mean of retained samples
    sample_count: int

    @property
    def is_active(self) -> bool:
        return self.start_time is not None


@dataclass(frozen=True)
class PipelineSnapshot:
    """Read-only state published to consumers after every processed fix."""

    fix: LocationFix | None
    speed_mph: float
    display_speed: float  # in the configured speed unit
    speed_unit: SpeedUnit
    accuracy: AccuracyReport | None
    speed_limit: int | None  # effective limit in the configured unit
    speed_limit_source: str | None
    is_exceeding: bool
    exceedance_ratio: float  # 0.0 - 1.0
    location_info: LocationInfo | None
    trip: TripSummary
