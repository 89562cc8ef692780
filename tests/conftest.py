from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone

import pytest

from speedly.models import LocationFix
from speedly.pipeline import InlineExecutor

BASE_TIME = datetime(2025, 10, 18, 8, 0, 0, tzinfo=timezone.utc)
BASE_LAT = 50.0755
BASE_LON = 14.4378

# ~111 m per 0.001 degree of latitude
DEG_PER_100M = 0.0009


def make_fix(seconds=0.0, lat=BASE_LAT, lon=BASE_LON, speed_mps=10.0, accuracy=5.0, speed_accuracy=0.5):
    return LocationFix(
        latitude=lat,
        longitude=lon,
        horizontal_accuracy_m=accuracy,
        speed_accuracy=speed_accuracy,
        speed_mps=speed_mps,
        timestamp=BASE_TIME + timedelta(seconds=seconds),
    )


class ImmediateExecutor(InlineExecutor):
    """Inline executor that counts submissions."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        return super().submit(fn, *args, **kwargs)


class ManualExecutor(Executor):
    """Holds submitted work as running futures until a test completes them."""

    def __init__(self):
        self.pending: list[tuple[Future, object, tuple]] = []

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        future.set_running_or_notify_cancel()
        self.pending.append((future, fn, args))
        return future

    def complete(self, index):
        future, fn, args = self.pending[index]
        future.set_result(fn(*args))


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from real config files."""
    from speedly import config

    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "global" / "speedly.json")
    monkeypatch.setattr(config, "LOCAL_CONFIG_PATH", tmp_path / "local" / "speedly.json")
