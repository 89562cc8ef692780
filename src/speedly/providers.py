"""Location providers feeding fixes into the pipeline."""

import logging
from typing import Callable

import gpxpy

from speedly.distance import haversine_distance
from speedly.models import AuthorizationStatus, LocationFix

logger = logging.getLogger(__name__)

DEFAULT_ACCURACY_M = 5.0
HDOP_TO_METERS = 5.0  # rough UERE for consumer receivers

FixCallback = Callable[[LocationFix], object]
AuthorizationCallback = Callable[[AuthorizationStatus], object]


class LocationProvider:
    """Push-based source of fixes; subclasses call ``_emit_fix``."""

    def __init__(self):
        self.authorization_status = AuthorizationStatus.NOT_DETERMINED
        self._fix_callbacks: list[FixCallback] = []
        self._authorization_callbacks: list[AuthorizationCallback] = []
        self.running = False

    @property
    def is_authorized(self) -> bool:
        return self.authorization_status.is_authorized

    def subscribe(self, on_fix: FixCallback, on_authorization: AuthorizationCallback | None = None) -> None:
        self._fix_callbacks.append(on_fix)
        if on_authorization is not None:
            self._authorization_callbacks.append(on_authorization)

    def _set_authorization(self, status: AuthorizationStatus) -> None:
        if status is self.authorization_status:
            return
        self.authorization_status = status
        for callback in self._authorization_callbacks:
            callback(status)

    def _emit_fix(self, fix: LocationFix) -> None:
        for callback in self._fix_callbacks:
            callback(fix)

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        self.running = False


def _point_accuracy(point, default_accuracy_m: float) -> float:
    hdop = getattr(point, "horizontal_dilution", None)
    if hdop is not None:
        return hdop * HDOP_TO_METERS
    return default_accuracy_m


def load_gpx_fixes(filepath: str, default_accuracy_m: float = DEFAULT_ACCURACY_M) -> list[LocationFix]:
    """Parse a GPX file into fixes.

    Speed comes from the GPX point when recorded, otherwise from the distance
    and time to the previous point. Points without a timestamp are skipped.
    """
    with open(filepath, "r") as f:
        gpx = gpxpy.parse(f)

    fixes: list[LocationFix] = []
    skipped = 0
    for track in gpx.tracks:
        for segment in track.segments:
            previous = None
            for pt in segment.points:
                if pt.time is None:
                    skipped += 1
                    continue

                speed = pt.speed
                if speed is None:
                    speed = 0.0
                    if previous is not None:
                        elapsed = (pt.time - previous.time).total_seconds()
                        if elapsed > 0:
                            dist = haversine_distance(previous.latitude, previous.longitude, pt.latitude, pt.longitude)
                            speed = dist / elapsed

                fixes.append(
                    LocationFix(
                        latitude=pt.latitude,
                        longitude=pt.longitude,
                        horizontal_accuracy_m=_point_accuracy(pt, default_accuracy_m),
                        speed_accuracy=-1.0,
                        speed_mps=speed,
                        timestamp=pt.time,
                    )
                )
                previous = pt

    if skipped:
        logger.warning("Skipped %d GPX points without timestamps", skipped)
    return fixes


class GpxReplayProvider(LocationProvider):
    """Replays a recorded GPX track as a stream of fixes, as fast as possible."""

    def __init__(self, filepath: str, default_accuracy_m: float = DEFAULT_ACCURACY_M):
        super().__init__()
        self.filepath = filepath
        self.default_accuracy_m = default_accuracy_m

    def start(self) -> None:
        fixes = load_gpx_fixes(self.filepath, self.default_accuracy_m)
        self._set_authorization(AuthorizationStatus.AUTHORIZED_WHEN_IN_USE)
        self.running = True
        for fix in fixes:
            if not self.running:
                break
            self._emit_fix(fix)
        self.running = False

