from collections import deque

DEFAULT_WINDOW_SIZE = 5
STATIONARY_THRESHOLD = 0.5  # below this the vehicle is treated as stopped


def weighted_average(speeds) -> float:
    """Linearly recency-weighted mean: the oldest sample weighs 1, the newest n."""
    weighted_sum = 0.0
    total_weight = 0.0
    for index, speed in enumerate(speeds):
        weight = float(index + 1)
        weighted_sum += speed * weight
        total_weight += weight
    return weighted_sum / total_weight if total_weight > 0 else 0.0


class SpeedSmoother:
    """Stabilizes raw GPS speed readings over a short sliding window.

    Recent readings get more weight so the value still tracks acceleration,
    while a single noisy fix cannot spike the output. Speeds below
    STATIONARY_THRESHOLD snap to exactly 0.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE, stationary_threshold: float = STATIONARY_THRESHOLD):
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self.stationary_threshold = stationary_threshold
        self.smoothing_factor: float | None = None
        self._window: deque[float] = deque(maxlen=window_size)
        self.current = 0.0

    @property
    def window(self) -> list[float]:
        return list(self._window)

    def update(self, raw_speed: float) -> float | None:
        """Add a raw sample and return the stabilized speed.

        Negative readings are invalid: they are ignored and None is returned.
        """
        if raw_speed < 0:
            return None
        self._window.append(raw_speed)
        smoothed = weighted_average(self._window)
        self.current = 0.0 if smoothed < self.stationary_threshold else smoothed
        return self.current

    def reset(self) -> None:
        self._window.clear()
        self.current = 0.0

    def update_smoothing_factor(self, factor: float) -> None:
        """Record a new smoothing setting, dropping history when it is substantial."""
        self.smoothing_factor = factor
        if len(self._window) > 2:
            self._window.clear()
