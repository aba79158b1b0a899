"""
Frame sources.

Turn raw audio (a file, an array, or live blocks) into the per-frame
inputs the engine consumes: an RMS level and a byte-scaled magnitude
spectrum laid out like a browser AnalyserNode (N bins evenly spaced
over [0, nyquist], values in [0, 255]).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

import librosa
import numpy as np
from scipy import fft as scipy_fft
from scipy import signal as scipy_signal

DEFAULT_SAMPLE_RATE = 44100


@dataclass
class AudioFrame:
    """Inputs for one engine tick."""

    index: int
    time: float
    level: float
    spectrum: np.ndarray
    samples: np.ndarray


def block_level(samples: np.ndarray) -> float:
    """RMS amplitude of a sample block."""
    if len(samples) == 0:
        return 0.0
    samples = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(samples * samples)))


class SpectrumAnalyzer:
    """
    Byte-scaled magnitude spectrum with temporal smoothing.

    Follows the Web Audio analyser recipe: Blackman window, magnitude
    normalized by FFT size, exponential smoothing across calls, decibel
    conversion and linear mapping of [min_db, max_db] onto [0, 255].
    """

    def __init__(
        self,
        n_bins: int = 64,
        fft_size: int | None = None,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ):
        """
        Initialize the analyzer.

        Args:
            n_bins: Number of output bins.
            fft_size: FFT length (default 2 * n_bins). Larger sizes are
                averaged down to n_bins.
            smoothing: Smoothing time constant in [0, 1).
            min_db: Level mapped to 0.
            max_db: Level mapped to 255.
        """
        self.n_bins = n_bins
        self.fft_size = fft_size or 2 * n_bins
        if self.fft_size < 2 * n_bins:
            raise ValueError("fft_size must be at least 2 * n_bins")
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db

        self._window = scipy_signal.get_window("blackman", self.fft_size)
        self._smoothed = np.zeros(self.fft_size // 2)

    def analyze(self, samples: np.ndarray) -> np.ndarray:
        """
        Spectrum of the most recent fft_size samples.

        Args:
            samples: Mono samples ending at the current instant.

        Returns:
            Array of n_bins values in [0, 255].
        """
        block = np.asarray(samples, dtype=np.float64)[-self.fft_size:]
        if len(block) < self.fft_size:
            block = np.pad(block, (self.fft_size - len(block), 0))

        spectrum = scipy_fft.rfft(block * self._window)[: self.fft_size // 2]
        magnitude = np.abs(spectrum) / self.fft_size

        self._smoothed = self.smoothing * self._smoothed + (1 - self.smoothing) * magnitude

        with np.errstate(divide="ignore"):
            db = 20 * np.log10(self._smoothed)
        scaled = 255.0 * (db - self.min_db) / (self.max_db - self.min_db)
        scaled = np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0)

        group = len(scaled) // self.n_bins
        return scaled[: group * self.n_bins].reshape(self.n_bins, group).mean(axis=1)

    def reset(self):
        self._smoothed = np.zeros(self.fft_size // 2)


def load_audio(
    audio_path: Union[str, Path],
    sr: int = DEFAULT_SAMPLE_RATE,
) -> tuple[np.ndarray, int]:
    """Load an audio file as mono float samples at sr."""
    y, sr_out = librosa.load(audio_path, sr=sr, mono=True)
    return y, sr_out


class ArrayFrameSource:
    """
    Slices a mono signal into frames at a fixed rate.

    Levels come from librosa's frame RMS; spectra from a SpectrumAnalyzer
    fed the samples that end at each frame boundary.
    """

    def __init__(
        self,
        y: np.ndarray,
        sr: int = DEFAULT_SAMPLE_RATE,
        fps: int = 60,
        analyzer: SpectrumAnalyzer | None = None,
        history: int = 2048,
    ):
        self.y = np.asarray(y, dtype=np.float32)
        self.sr = sr
        self.fps = fps or 60
        self.hop_length = int(sr / self.fps)
        self.analyzer = analyzer or SpectrumAnalyzer()
        self.history = max(history, self.analyzer.fft_size)
        self.latest_samples: np.ndarray | None = None

    @property
    def n_frames(self) -> int:
        return len(self.y) // self.hop_length

    @property
    def duration(self) -> float:
        return len(self.y) / self.sr

    def levels(self) -> np.ndarray:
        """Per-frame RMS level."""
        if self.n_frames == 0:
            return np.zeros(0, dtype=np.float32)
        y = self.y[: self.n_frames * self.hop_length]
        return librosa.feature.rms(
            y=y,
            frame_length=self.hop_length,
            hop_length=self.hop_length,
            center=False,
        )[0]

    def __iter__(self) -> Iterator[AudioFrame]:
        self.analyzer.reset()
        levels = self.levels()
        for i in range(self.n_frames):
            end = (i + 1) * self.hop_length
            samples = self.y[max(0, end - self.history):end]
            self.latest_samples = samples
            yield AudioFrame(
                index=i,
                time=i / self.fps,
                level=float(np.clip(levels[i], 0.0, 1.0)),
                spectrum=self.analyzer.analyze(samples),
                samples=samples,
            )

    def get_latest_samples(self) -> np.ndarray | None:
        return self.latest_samples


class RecordingTonePlayer:
    """Tone player that only remembers what it was asked to play."""

    def __init__(self):
        self.calls: list[tuple[float, float, float, float]] = []

    def play(self, frequency: float, velocity: float, start_offset: float, duration: float):
        self.calls.append((float(frequency), float(velocity), float(start_offset), float(duration)))

    def __len__(self) -> int:
        return len(self.calls)
