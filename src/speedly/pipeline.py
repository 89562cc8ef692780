"""Per-fix orchestration of smoothing, trip tracking, lookups and alerts.

All pipeline state is mutated from the thread that calls ``process_fix``.
Lookups run on an executor; their results are queued and applied at the
start of the next ``process_fix`` (or an explicit ``apply_pending_results``)
so worker threads never touch trip or resolver state directly.
"""

import logging
import queue
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable

from speedly.accuracy import build_report
from speedly.config import Settings
from speedly.distance import distance_miles
from speedly.geocode import NominatimGeocoder, ReverseGeocodeLookup
from speedly.models import (
    AccuracyReport,
    AuthorizationStatus,
    LocationFix,
    LocationInfo,
    PipelineSnapshot,
)
from speedly.smoothing import SpeedSmoother
from speedly.speed_limit import SpeedLimitResolver
from speedly.trip import TripAggregator
from speedly.units import MPS_TO_MPH

logger = logging.getLogger(__name__)

MIN_TRIP_SPEED = 1.0  # mph; slower samples are GPS jitter
MIN_DISTANCE_DELTA = 0.001  # miles
MAX_DISTANCE_DELTA = 0.1  # miles; larger jumps are teleport artifacts

SPEED_LIMIT = "speed_limit"
GEOCODE = "geocode"

SnapshotCallback = Callable[[PipelineSnapshot], None]


def sample_accepted(speed_mph: float) -> bool:
    return speed_mph > MIN_TRIP_SPEED


def distance_accepted(delta_miles: float, speed_mph: float) -> bool:
    """Deltas outside the jitter band are dropped, not clamped."""
    return MIN_DISTANCE_DELTA < delta_miles < MAX_DISTANCE_DELTA and sample_accepted(speed_mph)


class InlineExecutor(Executor):
    """Runs lookups on the calling thread.

    Used for replays, where fixes arrive faster than a worker could answer:
    each result is queued before the next fix and applied at its start.
    """

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class LocationPipeline:
    def __init__(
        self,
        settings: Settings | None = None,
        speed_limit_resolver: SpeedLimitResolver | None = None,
        geocode_lookup: ReverseGeocodeLookup | None = None,
        smoother: SpeedSmoother | None = None,
        trip: TripAggregator | None = None,
        executor: Executor | None = None,
        lookups_enabled: bool = True,
    ):
        self.settings = settings if settings is not None else Settings()
        self.speed_limit = speed_limit_resolver or SpeedLimitResolver(
            url=self.settings.overpass_url,
            user_agent=self.settings.user_agent,
            timeout=self.settings.request_timeout_s,
        )
        self.geocode = geocode_lookup or ReverseGeocodeLookup(
            NominatimGeocoder(user_agent=self.settings.user_agent, timeout=self.settings.request_timeout_s)
        )
        self.smoother = smoother or SpeedSmoother()
        self.smoother.update_smoothing_factor(self.settings.speed_smoothing)
        self.trip = trip or TripAggregator()
        self.lookups_enabled = lookups_enabled

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="speedly-lookup")
        self._results: queue.Queue = queue.Queue()
        self._tokens = {SPEED_LIMIT: 0, GEOCODE: 0}
        self._in_flight: dict[str, Future] = {}

        if self.settings.manual_speed_limit > 0:
            self.speed_limit.set_manual_limit(self.settings.manual_speed_limit)

        self.authorization_status = AuthorizationStatus.NOT_DETERMINED
        self._trip_start_pending = False
        self.last_fix: LocationFix | None = None
        self.accuracy: AccuracyReport | None = None
        self.is_exceeding = False
        self.alert_count = 0
        self._snapshot_callbacks: list[SnapshotCallback] = []
        self._alert_callbacks: list[SnapshotCallback] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: SnapshotCallback) -> None:
        """Receive a snapshot after every processed fix."""
        self._snapshot_callbacks.append(callback)

    def on_alert(self, callback: SnapshotCallback) -> None:
        """Receive a snapshot each time the speed limit starts being exceeded."""
        self._alert_callbacks.append(callback)

    def attach(self, provider) -> None:
        """Wire a LocationProvider's fixes and authorization changes to this pipeline."""
        provider.subscribe(self.process_fix, self.handle_authorization_change)

    # ------------------------------------------------------------------
    # Fix processing
    # ------------------------------------------------------------------

    def process_fix(self, fix: LocationFix) -> PipelineSnapshot | None:
        """Run one fix through the pipeline.

        Returns the published snapshot, or None when the fix is invalid and
        was dropped without touching any state.
        """
        if fix.speed_mps < 0:
            logger.debug("Dropping fix with invalid speed %.2f", fix.speed_mps)
            return None

        self.apply_pending_results()

        if self._trip_start_pending:
            self._trip_start_pending = False
            self.trip.start(fix.timestamp)

        self.accuracy = build_report(fix)
        speed_mph = self.smoother.update(fix.speed_mps * MPS_TO_MPH)
        self._update_trip(fix, speed_mph)

        if self.lookups_enabled:
            self._dispatch(SPEED_LIMIT, self.speed_limit.begin, self.speed_limit.lookup, fix)
            self._dispatch(GEOCODE, self.geocode.begin, self.geocode.lookup, fix)

        self.last_fix = fix
        self._check_speed_limit_alert()

        snapshot = self.snapshot()
        for callback in self._snapshot_callbacks:
            callback(snapshot)
        return snapshot

    def _update_trip(self, fix: LocationFix, speed_mph: float) -> None:
        trip = self.trip
        if not trip.is_active:
            return

        if sample_accepted(speed_mph):
            trip.add_speed_sample(speed_mph)

        if self.last_fix is not None:
            delta = distance_miles(
                self.last_fix.latitude, self.last_fix.longitude,
                fix.latitude, fix.longitude,
            )
            if distance_accepted(delta, speed_mph):
                trip.add_distance(delta)

        trip.tick(fix.timestamp)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _dispatch(self, kind: str, begin, lookup, fix: LocationFix) -> None:
        if not begin(fix):
            return

        self._tokens[kind] += 1
        token = self._tokens[kind]

        previous = self._in_flight.get(kind)
        if previous is not None and not previous.done():
            previous.cancel()

        future = self._executor.submit(lookup, fix)
        self._in_flight[kind] = future
        future.add_done_callback(lambda f: self._results.put((kind, token, f)))

    def apply_pending_results(self) -> int:
        """Apply finished lookups from the fix-processing context.

        Results from requests superseded by a newer one of the same kind are
        discarded. Returns the number of results applied.
        """
        applied = 0
        while True:
            try:
                kind, token, future = self._results.get_nowait()
            except queue.Empty:
                break

            if token != self._tokens[kind]:
                logger.debug("Discarding stale %s result (token %d < %d)", kind, token, self._tokens[kind])
                continue
            if future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                logger.warning("%s lookup raised: %s", kind, error)
                continue

            if kind == SPEED_LIMIT:
                self.speed_limit.apply(future.result())
            else:
                self.geocode.apply(future.result())
            applied += 1

        if applied:
            self._check_speed_limit_alert()
        return applied

    # ------------------------------------------------------------------
    # Speed limit alerts
    # ------------------------------------------------------------------

    @property
    def display_speed(self) -> float:
        return self.settings.speed_unit.convert_speed(self.smoother.current)

    @property
    def current_speed_limit(self) -> int | None:
        return self.speed_limit.effective_limit(self.settings.speed_unit)

    def _exceeding(self) -> bool:
        limit = self.current_speed_limit
        if limit is None:
            return False
        return self.display_speed > limit

    def _exceedance_ratio(self) -> float:
        limit = self.current_speed_limit
        if not limit:
            return 0.0
        excess = (self.display_speed - limit) / limit
        return min(max(excess, 0.0), 1.0)

    def _check_speed_limit_alert(self) -> None:
        exceeding = self._exceeding()
        # State is tracked even with alerts off so turning them on mid-excess stays quiet
        if exceeding and not self.is_exceeding and self.settings.speed_limit_alerts:
            self.alert_count += 1
            snapshot = self.snapshot(is_exceeding=True)
            for callback in self._alert_callbacks:
                callback(snapshot)
        self.is_exceeding = exceeding

    # ------------------------------------------------------------------
    # Trip, settings and authorization actions
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        if self.last_fix is not None:
            return self.last_fix.timestamp
        return datetime.now(timezone.utc)

    def start_trip(self, now: datetime | None = None) -> None:
        self.trip.start(now or self._now())

    def stop_trip(self, now: datetime | None = None) -> None:
        self._trip_start_pending = False
        self.trip.stop(now)

    def reset_trip(self, now: datetime | None = None) -> None:
        self.trip.restart(now or self._now())

    def set_manual_speed_limit(self, limit: int) -> None:
        self.speed_limit.set_manual_limit(limit, self._now())
        self.settings.manual_speed_limit = limit
        self._check_speed_limit_alert()

    def clear_manual_speed_limit(self) -> None:
        self.speed_limit.clear_manual_limit()
        self.settings.manual_speed_limit = 0
        self._check_speed_limit_alert()

    def update_speed_smoothing(self, factor: float) -> None:
        self.settings.speed_smoothing = factor
        self.smoother.update_smoothing_factor(factor)

    @property
    def is_authorized(self) -> bool:
        return self.authorization_status.is_authorized

    def handle_authorization_change(self, status: AuthorizationStatus) -> None:
        """Track authorization; a trip starts automatically once authorized."""
        logger.info("Location authorization changed to %s", status.value)
        self.authorization_status = status
        if not status.is_authorized or self.trip.is_active:
            self._trip_start_pending = False
            return
        if self.last_fix is None:
            # Start on the first fix's clock rather than the wall clock
            self._trip_start_pending = True
        else:
            self.start_trip()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def location_info(self) -> LocationInfo | None:
        return self.geocode.current

    def snapshot(self, is_exceeding: bool | None = None) -> PipelineSnapshot:
        return PipelineSnapshot(
            fix=self.last_fix,
            speed_mph=self.smoother.current,
            display_speed=self.display_speed,
            speed_unit=self.settings.speed_unit,
            accuracy=self.accuracy,
            speed_limit=self.current_speed_limit,
            speed_limit_source=self.speed_limit.effective_source(),
            is_exceeding=self.is_exceeding if is_exceeding is None else is_exceeding,
            exceedance_ratio=self._exceedance_ratio(),
            location_info=self.geocode.current,
            trip=self.trip.summary(),
        )

    def close(self, wait: bool = True) -> None:
        """Shut down the lookup executor if the pipeline created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
