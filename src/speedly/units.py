"""Speed and distance unit conversion at the presentation boundary.

Internally the pipeline works in mph and miles.
"""

from enum import Enum

MPS_TO_MPH = 2.23694
METERS_TO_MILES = 0.000621371
MILES_TO_KM = 1.60934


class SpeedUnit(str, Enum):
    METRIC = "kmh"
    IMPERIAL = "mph"

    @property
    def short_name(self) -> str:
        return "km/h" if self is SpeedUnit.METRIC else "mph"

    @property
    def distance_unit(self) -> str:
        return "km" if self is SpeedUnit.METRIC else "mi"

    def convert_speed(self, speed_mph: float) -> float:
        """Convert a speed in mph to this unit."""
        if self is SpeedUnit.METRIC:
            return speed_mph * MILES_TO_KM
        return speed_mph

    def convert_distance(self, miles: float) -> float:
        """Convert a distance in miles to this unit's distance unit."""
        if self is SpeedUnit.METRIC:
            return miles * MILES_TO_KM
        return miles

    @classmethod
    def parse(cls, value: "str | SpeedUnit") -> "SpeedUnit":
        """Accept 'metric'/'imperial' as well as the stored values 'kmh'/'mph'."""
        if isinstance(value, SpeedUnit):
            return value
        aliases = {"metric": cls.METRIC, "imperial": cls.IMPERIAL}
        key = str(value).strip().lower()
        if key in aliases:
            return aliases[key]
        return cls(key)


def convert_limit(limit: int, from_unit: SpeedUnit, to_unit: SpeedUnit) -> int:
    """Convert an integer speed limit between units, truncating like the dial does."""
    if from_unit is to_unit:
        return limit
    if from_unit is SpeedUnit.METRIC:
        return int(limit / MILES_TO_KM)
    return int(limit * MILES_TO_KM)
