"""
Pitch estimation module.

Derives a smoothed fundamental-frequency estimate from a magnitude
spectrum using two heuristics:

- Peak picking: loudest bin between 80Hz and 2kHz above a fixed floor.
- Harmonic sum: candidate fundamentals scored by the weighted energy at
  their first five harmonics.

A PitchSource wraps the estimator so an external pitch model can be
swapped in at startup without the rest of the engine noticing.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import librosa
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class PitchConfig:
    """Configuration for the FFT pitch estimator."""

    nyquist: float = 22050.0
    # Peak picking
    peak_min_hz: float = 80.0
    peak_max_hz: float = 2000.0
    peak_threshold: float = 50.0
    # Harmonic sum
    fundamental_min_hz: float = 80.0
    fundamental_max_hz: float = 800.0
    fundamental_step_hz: float = 5.0
    n_harmonics: int = 5
    harmonic_threshold: float = 100.0
    # Fusion
    harmonic_ceiling_hz: float = 1000.0
    smoothing: float = 0.1


class PitchEstimator:
    """
    FFT-based fundamental frequency estimator.

    The output is low-passed (factor 0.1 per detection) so it trails step
    changes by roughly ten frames instead of jittering between bins.
    """

    def __init__(self, config: PitchConfig | None = None):
        self.cfg = config or PitchConfig()
        self.pitch = 0.0

        cfg = self.cfg
        self._candidates = np.arange(
            cfg.fundamental_min_hz,
            cfg.fundamental_max_hz + cfg.fundamental_step_hz / 2,
            cfg.fundamental_step_hz,
        )
        self._harmonics = np.arange(1, cfg.n_harmonics + 1)
        # Lower harmonics weigh more
        self._weights = 1.0 / self._harmonics

    def bin_size(self, n_bins: int) -> float:
        """Width of one spectrum bin in Hz."""
        return self.cfg.nyquist / n_bins

    def find_peak_frequency(self, spectrum: np.ndarray) -> float:
        """
        Frequency of the loudest bin in the peak range.

        Returns:
            Frequency in Hz, or 0.0 when no bin exceeds the threshold.
        """
        n_bins = len(spectrum)
        if n_bins == 0:
            return 0.0

        bin_size = self.bin_size(n_bins)
        start = int(np.floor(self.cfg.peak_min_hz / bin_size))
        end = min(int(np.floor(self.cfg.peak_max_hz / bin_size)), n_bins)
        if end <= start:
            return 0.0

        window = spectrum[start:end]
        idx = int(np.argmax(window))
        if window[idx] > self.cfg.peak_threshold:
            return (start + idx) * bin_size
        return 0.0

    def harmonic_scores(self, spectrum: np.ndarray) -> np.ndarray:
        """Harmonic-sum score for every candidate fundamental."""
        n_bins = len(spectrum)
        bin_size = self.bin_size(n_bins)

        bins = np.floor(np.outer(self._candidates, self._harmonics) / bin_size).astype(int)
        in_range = bins < n_bins
        magnitudes = np.where(in_range, spectrum[np.minimum(bins, n_bins - 1)], 0.0)
        return magnitudes @ self._weights

    def find_fundamental_frequency(self, spectrum: np.ndarray) -> float:
        """
        Best harmonic-sum fundamental.

        Returns:
            Frequency in Hz, or 0.0 when the best score is too weak.
        """
        if len(spectrum) == 0:
            return 0.0

        scores = self.harmonic_scores(spectrum)
        best = int(np.argmax(scores))
        if scores[best] > self.cfg.harmonic_threshold:
            return float(self._candidates[best])
        return 0.0

    def detect(self, spectrum: np.ndarray) -> float:
        """Fuse both heuristics into a raw (unsmoothed) detection."""
        harmonic = self.find_fundamental_frequency(spectrum)
        if 0 < harmonic < self.cfg.harmonic_ceiling_hz:
            return harmonic
        return self.find_peak_frequency(spectrum)

    def estimate(self, spectrum: np.ndarray | None) -> float:
        """
        Update and return the smoothed pitch.

        An empty spectrum or a frame without detection keeps the
        previous estimate.
        """
        if spectrum is None or len(spectrum) == 0:
            return self.pitch

        detected = self.detect(np.asarray(spectrum, dtype=float))
        if detected > 0:
            self.pitch = self.pitch + (detected - self.pitch) * self.cfg.smoothing
        return self.pitch


class PitchModel(Protocol):
    """External pitch model (e.g. a neural tracker)."""

    def load(self) -> None: ...

    def get_pitch(self) -> float | None: ...


class PitchSource(Protocol):
    """Anything that yields one pitch estimate per frame."""

    pitch: float

    def estimate(self, spectrum: np.ndarray | None) -> float: ...


class FFTPitchSource:
    """PitchSource backed by the built-in FFT estimator."""

    name = "fft"

    def __init__(self, estimator: PitchEstimator | None = None):
        self.estimator = estimator or PitchEstimator()

    @property
    def pitch(self) -> float:
        return self.estimator.pitch

    def estimate(self, spectrum: np.ndarray | None) -> float:
        return self.estimator.estimate(spectrum)


class ExternalModelPitchSource:
    """
    PitchSource that prefers an external model.

    The FFT estimator keeps running underneath so that, if the model ever
    fails to load or answer, the source can drop back to it for the rest
    of the session without a cold start. Failed models are never retried.
    """

    name = "model"

    def __init__(
        self,
        model: PitchModel,
        fallback: PitchEstimator | None = None,
        smoothing: float = 0.1,
    ):
        self.model = model
        self.fallback = fallback or PitchEstimator()
        self.smoothing = smoothing
        self.pitch = 0.0
        self.healthy = True

        try:
            self.model.load()
        except Exception as e:
            logger.warning("Pitch model failed to load, using FFT estimation: %s", e)
            self.healthy = False

    def estimate(self, spectrum: np.ndarray | None) -> float:
        fft_pitch = self.fallback.estimate(spectrum)

        if not self.healthy:
            self.pitch = fft_pitch
            return self.pitch

        try:
            detected = self.model.get_pitch()
        except Exception as e:
            logger.warning("Pitch model query failed, switching to FFT estimation: %s", e)
            self.healthy = False
            self.fallback.pitch = self.pitch or fft_pitch
            self.pitch = self.fallback.pitch
            return self.pitch

        if detected:
            self.pitch = self.pitch + (detected - self.pitch) * self.smoothing
        return self.pitch


class YinPitchModel:
    """
    Pitch model running librosa's YIN tracker over the latest sample block.

    Args:
        samples: Callable returning the most recent mono sample block.
        sample_rate: Sample rate of those blocks.
        fmin: Lowest fundamental to search.
        fmax: Highest fundamental to search.
        min_rms: Blocks quieter than this report no pitch.
    """

    def __init__(
        self,
        samples: Callable[[], np.ndarray | None],
        sample_rate: int = 44100,
        fmin: float = 80.0,
        fmax: float = 1000.0,
        min_rms: float = 0.01,
    ):
        self.samples = samples
        self.sample_rate = sample_rate
        self.fmin = fmin
        self.fmax = fmax
        self.min_rms = min_rms
        self.frame_length = 2048

    def load(self):
        # YIN needs at least two periods of fmin per frame
        min_length = int(2 * self.sample_rate / self.fmin) + 1
        while self.frame_length < min_length:
            self.frame_length *= 2

    def get_pitch(self) -> float | None:
        y = self.samples()
        if y is None or len(y) == 0:
            return None

        y = np.asarray(y, dtype=np.float32)
        if float(np.sqrt(np.mean(y * y))) < self.min_rms:
            return None
        if len(y) < self.frame_length:
            y = np.pad(y, (0, self.frame_length - len(y)))

        f0 = librosa.yin(
            y,
            fmin=self.fmin,
            fmax=self.fmax,
            sr=self.sample_rate,
            frame_length=self.frame_length,
            center=False,
        )
        f0 = f0[np.isfinite(f0)]
        if len(f0) == 0:
            return None
        return float(np.median(f0))


def select_pitch_source(
    model: PitchModel | None = None,
    config: PitchConfig | None = None,
) -> FFTPitchSource | ExternalModelPitchSource:
    """Pick the pitch source once, at startup."""
    estimator = PitchEstimator(config)
    if model is None:
        return FFTPitchSource(estimator)
    return ExternalModelPitchSource(model, fallback=estimator, smoothing=estimator.cfg.smoothing)
