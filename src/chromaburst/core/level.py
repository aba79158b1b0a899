"""
Loudness normalization module.

Turns the raw microphone amplitude into a calibrated level bounded to
[0.0, 1.0], plus a peak-hold meter and a smoothed level for animation.
"""

from dataclasses import dataclass

import numpy as np

MIN_SENSITIVITY = 0.5
MAX_SENSITIVITY = 10.0


@dataclass
class CalibrationParams:
    """Auto-calibration tuning."""

    warmup_ms: float = 5000.0
    target_level: float = 0.5  # Scaled level the average input should reach
    ceiling: float = 8.0  # Highest sensitivity auto-calibration will pick
    warmup_rate: float = 0.05
    steady_rate: float = 0.002
    average_rate: float = 0.05  # EMA rate of the raw input tracker
    min_dynamic_range: float = 0.3
    max_dynamic_range: float = 1.0


@dataclass
class LevelConfig:
    """Configuration for LevelProcessor."""

    sensitivity: float = 3.0
    dynamic_range: float = 0.5
    peak_decay: float = 0.95
    smoothing: float = 0.15
    auto_calibrate: bool = False
    calibration: CalibrationParams | None = None


@dataclass
class LevelState:
    """Persistent loudness state, mutated every frame."""

    raw_level: float = 0.0
    calibrated_level: float = 0.0
    smooth_level: float = 0.0
    max_recorded_level: float = 0.0
    peak_hold: float = 0.0
    dynamic_range: float = 0.5
    sensitivity: float = 3.0


def lerp(current: float, target: float, factor: float) -> float:
    return current + (target - current) * factor


def map_range(
    value: float,
    in_min: float,
    in_max: float,
    out_min: float,
    out_max: float,
) -> float:
    """Linear re-map of value from one range to another (unclamped)."""
    if in_max == in_min:
        return out_min
    return out_min + (value - in_min) * (out_max - out_min) / (in_max - in_min)


def clamp_sensitivity(value: float) -> float:
    return float(np.clip(value, MIN_SENSITIVITY, MAX_SENSITIVITY))


class LevelProcessor:
    """
    Normalizes raw input amplitude into a calibrated loudness signal.

    Steps per frame: sensitivity gain, running-max tracking, dynamic-range
    re-map and clamp, peak hold with geometric decay, and a first-order
    low-pass for the animated level.
    """

    def __init__(self, config: LevelConfig | None = None):
        """
        Initialize the processor.

        Args:
            config: Level configuration (default: LevelConfig()).
        """
        self.cfg = config or LevelConfig()
        self.calibration = self.cfg.calibration or CalibrationParams()
        self.state = LevelState(
            dynamic_range=self.cfg.dynamic_range,
            sensitivity=clamp_sensitivity(self.cfg.sensitivity),
        )
        self.auto_calibrate = self.cfg.auto_calibrate

        self._calibration_start_ms: float | None = None
        self._avg_raw = 0.0
        self._avg_scaled = 0.0

    def in_warmup(self, now_ms: float) -> bool:
        """True while auto-calibration is inside its warm-up window."""
        if not self.auto_calibrate:
            return False
        if self._calibration_start_ms is None:
            return True
        return now_ms - self._calibration_start_ms < self.calibration.warmup_ms

    def update(self, raw_level: float, now_ms: float = 0.0) -> float:
        """
        Process one raw amplitude reading.

        Args:
            raw_level: Raw amplitude in [0, 1].
            now_ms: Current clock time, used by auto-calibration.

        Returns:
            Calibrated level in [0, 1].
        """
        state = self.state
        raw = max(0.0, float(raw_level))
        state.raw_level = raw

        if self.auto_calibrate:
            self._calibrate(raw, now_ms)

        level = raw * state.sensitivity

        if level > state.max_recorded_level:
            state.max_recorded_level = level

        if state.max_recorded_level > 0:
            level = map_range(
                level, 0.0, state.max_recorded_level * state.dynamic_range, 0.0, 1.0
            )
            level = float(np.clip(level, 0.0, 1.0))

        if level > state.peak_hold:
            state.peak_hold = level
        else:
            state.peak_hold *= self.cfg.peak_decay

        state.smooth_level = lerp(state.smooth_level, level, self.cfg.smoothing)
        state.calibrated_level = level
        return level

    def _calibrate(self, raw: float, now_ms: float):
        """Adapt sensitivity and dynamic range toward the observed input."""
        params = self.calibration
        state = self.state

        if self._calibration_start_ms is None:
            self._calibration_start_ms = now_ms
            self._avg_raw = raw

        warm = now_ms - self._calibration_start_ms < params.warmup_ms
        rate = params.warmup_rate if warm else params.steady_rate

        self._avg_raw = lerp(self._avg_raw, raw, params.average_rate)
        if self._avg_raw > 1e-6:
            desired = params.target_level / self._avg_raw
            desired = float(np.clip(desired, MIN_SENSITIVITY, params.ceiling))
            state.sensitivity = clamp_sensitivity(lerp(state.sensitivity, desired, rate))

        self._avg_scaled = lerp(self._avg_scaled, raw * state.sensitivity, params.average_rate)
        if state.max_recorded_level > 0:
            ratio = self._avg_scaled / state.max_recorded_level
            target_range = float(
                np.clip(
                    params.min_dynamic_range + 2.0 * ratio,
                    params.min_dynamic_range,
                    params.max_dynamic_range,
                )
            )
            state.dynamic_range = lerp(state.dynamic_range, target_range, rate)

    def adjust_sensitivity(self, delta: float) -> float:
        """Nudge sensitivity by delta, clamped to [0.5, 10]."""
        self.state.sensitivity = clamp_sensitivity(self.state.sensitivity + delta)
        return self.state.sensitivity

    def reset_calibration(self):
        """Forget the recorded range and restart the calibration window."""
        self.state.max_recorded_level = 0.0
        self.state.peak_hold = 0.0
        self.state.dynamic_range = self.cfg.dynamic_range
        self._calibration_start_ms = None
        self._avg_raw = 0.0
        self._avg_scaled = 0.0
