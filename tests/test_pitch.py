"""Tests for pitch estimation and pitch sources."""

import numpy as np
import pytest

from chromaburst.core.pitch import (
    ExternalModelPitchSource,
    FFTPitchSource,
    PitchEstimator,
    YinPitchModel,
    select_pitch_source,
)


class TestPitchEstimator:
    """Tests for the FFT heuristics."""

    def test_harmonic_sum_finds_fundamental(self, harmonic_spectrum):
        estimator = PitchEstimator()
        assert estimator.find_fundamental_frequency(harmonic_spectrum) == pytest.approx(220.0)
        assert estimator.detect(harmonic_spectrum) == pytest.approx(220.0)

    def test_peak_fallback_below_harmonic_threshold(self):
        """A single modest peak is too weak for the harmonic sum."""
        spectrum = np.zeros(64)
        spectrum[2] = 80.0
        estimator = PitchEstimator()

        assert estimator.find_fundamental_frequency(spectrum) == 0.0
        assert estimator.detect(spectrum) == pytest.approx(2 * 22050.0 / 64)

    def test_peak_below_threshold_is_silence(self):
        spectrum = np.full(64, 10.0)
        assert PitchEstimator().find_peak_frequency(spectrum) == 0.0

    def test_estimate_is_smoothed(self, harmonic_spectrum):
        estimator = PitchEstimator()
        assert estimator.estimate(harmonic_spectrum) == pytest.approx(22.0)

        for _ in range(100):
            estimator.estimate(harmonic_spectrum)
        assert estimator.pitch == pytest.approx(220.0, abs=0.1)

    def test_no_detection_keeps_previous(self, harmonic_spectrum):
        estimator = PitchEstimator()
        estimator.estimate(harmonic_spectrum)
        previous = estimator.pitch

        assert estimator.estimate(np.zeros(1024)) == previous
        assert estimator.estimate(None) == previous
        assert estimator.estimate(np.array([])) == previous

    def test_harmonic_scores_shape(self, harmonic_spectrum):
        scores = PitchEstimator().harmonic_scores(harmonic_spectrum)
        # 80..800 Hz in 5 Hz steps
        assert scores.shape == (145,)


class FailingModel:
    def __init__(self, fail_load=False, fail_after=0):
        self.fail_load = fail_load
        self.fail_after = fail_after
        self.calls = 0

    def load(self):
        if self.fail_load:
            raise RuntimeError("no weights")

    def get_pitch(self):
        self.calls += 1
        if self.calls > self.fail_after:
            raise RuntimeError("model crashed")
        return 440.0


class TestPitchSources:
    """Tests for source selection and model fallback."""

    def test_default_source_is_fft(self):
        source = select_pitch_source()
        assert isinstance(source, FFTPitchSource)
        assert source.pitch == 0.0

    def test_model_source_smooths_model_pitch(self, harmonic_spectrum):
        source = select_pitch_source(FailingModel(fail_after=100))
        assert isinstance(source, ExternalModelPitchSource)

        assert source.estimate(harmonic_spectrum) == pytest.approx(44.0)
        assert source.healthy

    def test_load_failure_falls_back(self, harmonic_spectrum):
        source = ExternalModelPitchSource(FailingModel(fail_load=True))
        assert not source.healthy
        assert source.estimate(harmonic_spectrum) == pytest.approx(22.0)

    def test_query_failure_is_permanent(self, harmonic_spectrum):
        model = FailingModel(fail_after=3)
        source = ExternalModelPitchSource(model)

        for _ in range(3):
            source.estimate(harmonic_spectrum)
        pitch_before = source.pitch

        assert source.estimate(harmonic_spectrum) == pytest.approx(pitch_before)
        assert not source.healthy

        # Never retried
        for _ in range(5):
            source.estimate(harmonic_spectrum)
        assert model.calls == 4

    def test_yin_model(self, sample_rate):
        t = np.arange(4096) / sample_rate
        block = (0.5 * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)

        model = YinPitchModel(lambda: block, sample_rate=sample_rate)
        model.load()
        assert model.get_pitch() == pytest.approx(220.0, rel=0.02)

    def test_yin_model_silence(self, sample_rate):
        model = YinPitchModel(lambda: np.zeros(2048), sample_rate=sample_rate)
        model.load()
        assert model.get_pitch() is None

        empty = YinPitchModel(lambda: None, sample_rate=sample_rate)
        assert empty.get_pitch() is None
