"""Tests for the LevelProcessor module."""

import numpy as np
import pytest

from chromaburst.core.level import (
    MAX_SENSITIVITY,
    MIN_SENSITIVITY,
    LevelConfig,
    LevelProcessor,
    lerp,
    map_range,
)


def test_map_range():
    assert map_range(5, 0, 10, 0, 1) == pytest.approx(0.5)
    assert map_range(20, 0, 10, 0, 1) == pytest.approx(2.0)
    assert map_range(3, 1, 1, 7, 9) == 7


def test_lerp():
    assert lerp(0.0, 1.0, 0.25) == pytest.approx(0.25)


class TestLevelProcessor:
    """Tests for gain, normalization and metering."""

    @pytest.mark.parametrize("sensitivity", [0.5, 1.0, 3.0, 10.0])
    def test_output_bounded(self, sensitivity):
        """Calibrated level stays in [0, 1] for any input and sensitivity."""
        rng = np.random.default_rng(0)
        processor = LevelProcessor(LevelConfig(sensitivity=sensitivity))

        for raw in rng.uniform(0, 1, 500):
            level = processor.update(raw)
            assert 0.0 <= level <= 1.0

    def test_silence_before_any_signal(self):
        processor = LevelProcessor()
        assert processor.update(0.0) == 0.0
        assert processor.state.max_recorded_level == 0.0

    def test_loud_frame_saturates(self):
        """A new maximum maps above the dynamic range and clamps to 1."""
        processor = LevelProcessor()
        assert processor.update(0.2) == pytest.approx(1.0)
        assert processor.state.max_recorded_level == pytest.approx(0.6)

    def test_relative_to_max(self):
        processor = LevelProcessor()
        processor.update(0.2)  # max 0.6, full scale at 0.3
        assert processor.update(0.05) == pytest.approx(0.5)

    def test_peak_hold_decays_geometrically(self):
        processor = LevelProcessor()
        processor.update(0.2)
        peak = processor.state.peak_hold

        for _ in range(10):
            processor.update(0.0)
            assert processor.state.peak_hold == pytest.approx(peak * 0.95)
            peak = processor.state.peak_hold

    def test_peak_hold_tracks_new_peaks(self):
        processor = LevelProcessor()
        processor.update(0.2)
        processor.update(0.01)
        processor.update(0.3)
        assert processor.state.peak_hold == pytest.approx(1.0)

    def test_smoothing(self):
        processor = LevelProcessor()
        processor.update(0.2)
        assert processor.state.smooth_level == pytest.approx(0.15)

    def test_adjust_sensitivity_clamped(self):
        processor = LevelProcessor()
        assert processor.adjust_sensitivity(0.5) == pytest.approx(3.5)
        for _ in range(40):
            processor.adjust_sensitivity(0.5)
        assert processor.state.sensitivity == MAX_SENSITIVITY
        for _ in range(40):
            processor.adjust_sensitivity(-0.5)
        assert processor.state.sensitivity == MIN_SENSITIVITY

    def test_config_sensitivity_clamped(self):
        assert LevelProcessor(LevelConfig(sensitivity=50)).state.sensitivity == MAX_SENSITIVITY

    def test_negative_input_treated_as_silence(self):
        processor = LevelProcessor()
        assert processor.update(-0.5) == 0.0


class TestAutoCalibration:
    """Tests for adaptive sensitivity."""

    def _run(self, processor, raw, times):
        history = []
        for now in times:
            processor.update(raw, now)
            history.append(processor.state.sensitivity)
        return history

    def test_quiet_room_raises_sensitivity(self, frame_times):
        """Flat quiet input drives sensitivity monotonically toward the ceiling."""
        processor = LevelProcessor(LevelConfig(auto_calibrate=True))
        warmup = [t for t in frame_times if t <= 5000]
        after = [t for t in frame_times if t > 5000][:120]

        history = self._run(processor, 0.05, warmup)

        assert all(b >= a for a, b in zip(history, history[1:]))
        assert history[-1] > 7.5
        assert history[-1] <= 8.0

        steady = self._run(processor, 0.05, after)
        assert abs(steady[-1] - history[-1]) < 0.1

    def test_loud_room_lowers_sensitivity(self, frame_times):
        processor = LevelProcessor(LevelConfig(auto_calibrate=True))
        history = self._run(processor, 0.5, frame_times[:300])
        assert all(b <= a for a, b in zip(history, history[1:]))
        assert history[-1] < 1.5

    def test_warmup_window(self):
        processor = LevelProcessor(LevelConfig(auto_calibrate=True))
        assert processor.in_warmup(0)
        processor.update(0.1, 100)
        assert processor.in_warmup(4000)
        assert not processor.in_warmup(6000)

    def test_disabled_leaves_sensitivity(self, frame_times):
        processor = LevelProcessor()
        self._run(processor, 0.05, frame_times[:100])
        assert processor.state.sensitivity == 3.0
        assert not processor.in_warmup(0)

    def test_dynamic_range_bounded(self, frame_times):
        processor = LevelProcessor(LevelConfig(auto_calibrate=True))
        rng = np.random.default_rng(1)
        for now, raw in zip(frame_times, rng.uniform(0, 0.3, len(frame_times))):
            processor.update(raw, now)
            assert 0.3 <= processor.state.dynamic_range <= 1.0

    def test_reset_keeps_sensitivity(self, frame_times):
        processor = LevelProcessor(LevelConfig(auto_calibrate=True))
        self._run(processor, 0.05, frame_times[:120])
        sensitivity = processor.state.sensitivity

        processor.reset_calibration()

        assert processor.state.sensitivity == sensitivity
        assert processor.state.max_recorded_level == 0.0
        assert processor.state.peak_hold == 0.0
        assert processor.in_warmup(10_000)
