import pytest

from speedly.smoothing import STATIONARY_THRESHOLD, SpeedSmoother, weighted_average


class TestWeightedAverage:
    def test_recent_samples_weigh_more(self):
        # (10*1 + 20*2) / 3
        assert weighted_average([10.0, 20.0]) == pytest.approx(50.0 / 3)

    def test_full_window(self):
        # weights 1..5 sum to 15
        speeds = [10.0, 10.0, 10.0, 10.0, 40.0]
        assert weighted_average(speeds) == pytest.approx((10 + 20 + 30 + 40 + 200) / 15)

    def test_empty(self):
        assert weighted_average([]) == 0.0


class TestSpeedSmoother:
    def test_single_sample_passes_through(self):
        smoother = SpeedSmoother()
        assert smoother.update(30.0) == pytest.approx(30.0)

    def test_window_evicts_oldest(self):
        smoother = SpeedSmoother(window_size=5)
        for speed in [100.0, 1.0, 2.0, 3.0, 4.0, 5.0]:
            smoother.update(speed)

        assert smoother.window == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert smoother.current == pytest.approx((1 + 4 + 9 + 16 + 25) / 15)

    def test_spike_is_damped(self):
        smoother = SpeedSmoother()
        for _ in range(4):
            smoother.update(30.0)
        result = smoother.update(90.0)

        assert 30.0 < result < 90.0

    def test_below_stationary_threshold_is_zero(self):
        smoother = SpeedSmoother()
        assert smoother.update(0.4) == 0.0
        assert smoother.update(0.49) == 0.0

    def test_threshold_itself_is_not_stationary(self):
        smoother = SpeedSmoother(window_size=1)
        assert smoother.update(STATIONARY_THRESHOLD) == STATIONARY_THRESHOLD

    def test_negative_speed_rejected_without_state_change(self):
        smoother = SpeedSmoother()
        smoother.update(20.0)
        before = smoother.window

        assert smoother.update(-1.0) is None
        assert smoother.window == before
        assert smoother.current == pytest.approx(20.0)

    def test_output_bounded_by_window(self):
        smoother = SpeedSmoother()
        speeds = [0.0, 3.0, 0.2, 45.0, 12.0, 7.5, 0.0, 0.0, 60.0, 1.0]
        for speed in speeds:
            result = smoother.update(speed)
            assert 0.0 <= result <= max(smoother.window)
            if weighted_average(smoother.window) < STATIONARY_THRESHOLD:
                assert result == 0.0

    def test_reset_clears_window(self):
        smoother = SpeedSmoother()
        smoother.update(10.0)
        smoother.reset()

        assert smoother.window == []
        assert smoother.current == 0.0
        assert smoother.update(40.0) == pytest.approx(40.0)

    def test_smoothing_factor_change_clears_large_history(self):
        smoother = SpeedSmoother()
        for speed in [10.0, 20.0, 30.0]:
            smoother.update(speed)
        smoother.update_smoothing_factor(0.5)

        assert smoother.window == []
        assert smoother.smoothing_factor == 0.5

    def test_smoothing_factor_change_keeps_short_history(self):
        smoother = SpeedSmoother()
        smoother.update(10.0)
        smoother.update(20.0)
        smoother.update_smoothing_factor(0.5)

        assert smoother.window == [10.0, 20.0]

    def test_invalid_window_size(self):
        with pytest.raises(ValueError):
            SpeedSmoother(window_size=0)
