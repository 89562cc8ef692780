"""Speed limit lookup via the OpenStreetMap Overpass API with a local estimate."""

import logging
import re
from datetime import datetime, timezone

import requests

from speedly.models import LocationFix, SpeedLimitRecord, SpeedLimitSource
from speedly.throttle import ThrottleGate, speed_limit_gate
from speedly.units import SpeedUnit

logger = logging.getLogger(__name__)

OVERPASS_URL = "https://overpass-api.de/api/interpreter"
USER_AGENT = "Speedly/1.0"
# requests applies this to the connect and to each read, not to the whole
# response; the [timeout:N] in the query bounds the server side as well.
REQUEST_TIMEOUT_S = 5.0
SEARCH_RADIUS_M = 50

REMOTE_CONFIDENCE = 0.9
ESTIMATE_CONFIDENCE = 0.3
ESTIMATE_LIMIT = 50  # km/h, urban default
ESTIMATE_REASON = "Urban default"

# Checked in order; spaced variants first so "50 mph" leaves "50", not "50 "
MAXSPEED_SUFFIXES = [
    (" mph", SpeedUnit.IMPERIAL),
    (" km/h", SpeedUnit.METRIC),
    ("mph", SpeedUnit.IMPERIAL),
    ("km/h", SpeedUnit.METRIC),
    ("kmh", SpeedUnit.METRIC),
]
_DIGITS = re.compile(r"[0-9]+")


def build_overpass_query(lat: float, lon: float, radius_m: int = SEARCH_RADIUS_M) -> str:
    """Query for one highway way with a maxspeed tag near the coordinate, tags only."""
    return (
        f"[out:json][timeout:{int(REQUEST_TIMEOUT_S)}];\n"
        "(\n"
        f'  way(around:{radius_m},{lat},{lon})["highway"]["maxspeed"];\n'
        ");\n"
        "out tags 1;"
    )


def _split_maxspeed(value: str) -> tuple[str, SpeedUnit]:
    text = value.strip().lower()
    for suffix, unit in MAXSPEED_SUFFIXES:
        if text.endswith(suffix):
            return text[: -len(suffix)], unit
    return text, SpeedUnit.METRIC


def parse_maxspeed(value: str) -> int | None:
    """Parse an OSM maxspeed tag such as "50", "50 mph" or "50km/h".

    Returns None for non-numeric values like "national" or "walk".
    """
    number, _ = _split_maxspeed(value)
    number = re.sub(r"\s+", "", number)
    if not _DIGITS.fullmatch(number):
        return None
    return int(number)


def maxspeed_unit(value: str) -> SpeedUnit:
    """Unit of a maxspeed tag; OSM defaults to km/h when none is given."""
    return _split_maxspeed(value)[1]


def estimate_speed_limit(now: datetime) -> SpeedLimitRecord:
    """Fallback used whenever the remote lookup gives nothing usable."""
    return SpeedLimitRecord(
        limit=ESTIMATE_LIMIT,
        source=SpeedLimitSource.ESTIMATED,
        confidence=ESTIMATE_CONFIDENCE,
        detected_at=now,
        reason=ESTIMATE_REASON,
        unit=SpeedUnit.METRIC,
    )


def query_overpass_speed_limit(
    lat: float,
    lon: float,
    now: datetime,
    url: str = OVERPASS_URL,
    user_agent: str = USER_AGENT,
    timeout: float = REQUEST_TIMEOUT_S,
) -> SpeedLimitRecord | None:
    """Ask Overpass for the nearest tagged road's maxspeed.

    Returns None on any network, HTTP, JSON or tag parsing failure.
    """
    query = build_overpass_query(lat, lon)
    try:
        response = requests.get(
            url,
            params={"data": query},
            headers={"User-Agent": user_agent},
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except requests.RequestException as e:
        logger.warning("Speed limit lookup failed: %s", e)
        return None
    except ValueError as e:
        logger.warning("Speed limit lookup returned invalid JSON: %s", e)
        return None

    elements = data.get("elements") if isinstance(data, dict) else None
    if not elements:
        logger.debug("No tagged road within %dm of %.6f,%.6f", SEARCH_RADIUS_M, lat, lon)
        return None

    tags = elements[0].get("tags") or {}
    maxspeed = tags.get("maxspeed")
    if not isinstance(maxspeed, str):
        return None

    limit = parse_maxspeed(maxspeed)
    if limit is None:
        logger.debug("Unparsable maxspeed tag: %r", maxspeed)
        return None

    return SpeedLimitRecord(
        limit=limit,
        source=SpeedLimitSource.REMOTE_LOOKUP,
        confidence=REMOTE_CONFIDENCE,
        detected_at=now,
        unit=maxspeed_unit(maxspeed),
    )


class SpeedLimitResolver:
    """Keeps the current speed limit for the road being driven.

    A resolution is split in three steps so the network call can run on a
    worker thread while gate and cache state only change on the caller's
    thread: ``begin`` (gate check), ``lookup`` (network, thread-safe) and
    ``apply`` (store the result). ``resolve`` runs all three inline.
    """

    def __init__(
        self,
        gate: ThrottleGate | None = None,
        url: str = OVERPASS_URL,
        user_agent: str = USER_AGENT,
        timeout: float = REQUEST_TIMEOUT_S,
    ):
        self.gate = gate if gate is not None else speed_limit_gate()
        self.url = url
        self.user_agent = user_agent
        self.timeout = timeout
        self.current: SpeedLimitRecord | None = None
        self.manual_record: SpeedLimitRecord | None = None

    def begin(self, fix: LocationFix) -> bool:
        """Return True and record the attempt if a lookup should be issued."""
        if not self.gate.should_proceed(fix.timestamp, fix, fix.horizontal_accuracy_m):
            return False
        self.gate.record_attempt(fix.timestamp, fix)
        return True

    def lookup(self, fix: LocationFix) -> SpeedLimitRecord:
        """Remote lookup with fallback to the estimate; never raises."""
        record = query_overpass_speed_limit(
            fix.latitude, fix.longitude, fix.timestamp,
            url=self.url, user_agent=self.user_agent, timeout=self.timeout,
        )
        if record is None:
            record = estimate_speed_limit(fix.timestamp)
        return record

    def apply(self, record: SpeedLimitRecord) -> None:
        self.current = record

    def resolve(self, fix: LocationFix) -> SpeedLimitRecord | None:
        """Resolve inline; returns the cached record when the gate is closed."""
        if not self.begin(fix):
            return self.current
        record = self.lookup(fix)
        self.apply(record)
        return record

    @property
    def manual_limit(self) -> int:
        return self.manual_record.limit if self.manual_record is not None else 0

    def set_manual_limit(self, limit: int, now: datetime | None = None) -> None:
        """Override the looked-up limit; 0 clears the override.

        The limit is in the user's display unit. The computed record is kept
        so clearing the override re-exposes it without a new query.
        """
        if limit < 0:
            raise ValueError(f"Manual speed limit must be non-negative, got {limit}")
        if limit == 0:
            self.manual_record = None
            return
        self.manual_record = SpeedLimitRecord(
            limit=limit,
            source=SpeedLimitSource.MANUAL_OVERRIDE,
            confidence=1.0,
            detected_at=now or datetime.now(timezone.utc),
        )

    def clear_manual_limit(self) -> None:
        self.manual_record = None

    def effective_limit(self, unit: SpeedUnit) -> int | None:
        """Limit exposed downstream in ``unit``: a manual limit always wins."""
        if self.manual_record is not None:
            return self.manual_record.limit
        if self.current is None:
            return None
        return self.current.converted_limit(unit)

    def effective_source(self) -> str | None:
        record = self.manual_record or self.current
        return record.display_name if record is not None else None
