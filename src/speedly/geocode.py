"""Reverse geocoding (coordinate -> street and city)."""

import logging
from dataclasses import dataclass
from typing import Protocol

from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from speedly.models import LocationFix, LocationInfo
from speedly.throttle import ThrottleGate, geocode_gate

logger = logging.getLogger(__name__)

USER_AGENT = "Speedly/1.0"
GEOCODE_TIMEOUT_S = 5.0

# Nominatim reports the locality under different keys depending on place size
LOCALITY_KEYS = ["city", "town", "village", "hamlet", "municipality"]


@dataclass(frozen=True)
class Placemark:
    thoroughfare: str | None
    locality: str | None
    country_code: str | None


class Geocoder(Protocol):
    def reverse(self, latitude: float, longitude: float) -> Placemark | None:
        """Return address components, None when nothing is known.

        May raise on transport errors.
        """


class NominatimGeocoder:
    """Geocoder backed by OpenStreetMap Nominatim through geopy."""

    def __init__(self, user_agent: str = USER_AGENT, timeout: float = GEOCODE_TIMEOUT_S, domain: str | None = None):
        kwargs = {"user_agent": user_agent, "timeout": timeout}
        if domain:
            kwargs["domain"] = domain
        self._client = Nominatim(**kwargs)

    def reverse(self, latitude: float, longitude: float) -> Placemark | None:
        location = self._client.reverse((latitude, longitude), exactly_one=True, addressdetails=True)
        if location is None:
            return None
        address = (location.raw or {}).get("address") or {}
        locality = next((address[k] for k in LOCALITY_KEYS if address.get(k)), None)
        country_code = address.get("country_code")
        return Placemark(
            thoroughfare=address.get("road"),
            locality=locality,
            country_code=country_code.upper() if country_code else None,
        )


class ReverseGeocodeLookup:
    """Keeps the most recent known street/city for the vehicle's position.

    A failed refresh never clears a value that is already known; the next
    fix that passes the gate simply tries again.
    """

    def __init__(self, geocoder: Geocoder, gate: ThrottleGate | None = None):
        self.geocoder = geocoder
        self.gate = gate if gate is not None else geocode_gate()
        self.current: LocationInfo | None = None

    def begin(self, fix: LocationFix) -> bool:
        if not self.gate.should_proceed(fix.timestamp, fix, fix.horizontal_accuracy_m):
            return False
        self.gate.record_attempt(fix.timestamp, fix)
        return True

    def lookup(self, fix: LocationFix) -> LocationInfo | None:
        """Query the geocoder; returns None on failure instead of raising."""
        try:
            placemark = self.geocoder.reverse(fix.latitude, fix.longitude)
        except (GeopyError, OSError, ValueError) as e:
            logger.warning("Reverse geocoding failed: %s", e)
            return None
        if placemark is None:
            return None
        return LocationInfo(
            street_name=placemark.thoroughfare,
            city_name=placemark.locality,
            country_code=placemark.country_code,
            timestamp=fix.timestamp,
        )

    def apply(self, info: LocationInfo | None) -> None:
        if info is not None:
            self.current = info

    def resolve(self, fix: LocationFix) -> LocationInfo | None:
        """Resolve inline, returning the current value (possibly unchanged)."""
        if self.begin(fix):
            self.apply(self.lookup(fix))
        return self.current
