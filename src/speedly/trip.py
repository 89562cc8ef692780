from datetime import datetime

from speedly.models import TripSummary

MAX_SAMPLE_HISTORY = 1000
TRIM_BATCH = 100


class TripAggregator:
    """Accumulates distance, duration and speed statistics for one drive.

    Speeds are in mph and distances in miles. Which samples and distance
    deltas count is decided by the caller; the aggregator accepts what it
    is given.
    """

    def __init__(self, max_history: int = MAX_SAMPLE_HISTORY, trim_batch: int = TRIM_BATCH):
        if trim_batch < 1 or max_history < trim_batch:
            raise ValueError("max_history must be at least trim_batch, and trim_batch positive")
        self.max_history = max_history
        self.trim_batch = trim_batch
        self.start_time: datetime | None = None
        self.duration = 0.0  # seconds
        self.distance = 0.0  # miles
        self.max_speed = 0.0  # mph
        self.speed_samples: list[float] = []

    @property
    def is_active(self) -> bool:
        return self.start_time is not None

    @property
    def average_speed(self) -> float:
        """Mean of the retained samples, not of the whole trip once trimmed."""
        if not self.speed_samples:
            return 0.0
        return sum(self.speed_samples) / len(self.speed_samples)

    def start(self, now: datetime) -> None:
        if self.start_time is not None:
            return
        self.start_time = now
        self.reset()

    def stop(self, now: datetime | None = None) -> None:
        """End the trip, keeping its counters for the summary."""
        if now is not None:
            self.tick(now)
        self.start_time = None

    def reset(self) -> None:
        self.duration = 0.0
        self.distance = 0.0
        self.max_speed = 0.0
        self.speed_samples.clear()

    def restart(self, now: datetime) -> None:
        """Zero the counters; an active trip starts over from ``now``."""
        self.reset()
        if self.start_time is not None:
            self.start_time = now

    def add_speed_sample(self, speed: float) -> None:
        self.speed_samples.append(speed)
        self.max_speed = max(self.max_speed, speed)
        if len(self.speed_samples) > self.max_history:
            del self.speed_samples[: self.trim_batch]

    def add_distance(self, delta: float) -> None:
        self.distance += delta

    def tick(self, now: datetime) -> None:
        """Recompute duration from the start time; no-op when inactive."""
        if self.start_time is None:
            return
        self.duration = max(0.0, (now - self.start_time).total_seconds())

    def summary(self) -> TripSummary:
        return TripSummary(
            start_time=self.start_time,
            duration_seconds=self.duration,
            distance=self.distance,
            max_speed=self.max_speed,
            average_speed=self.average_speed,
            sample_count=len(self.speed_samples),
        )
