"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from chromaburst.core.clock import FrameClock

# Default sample rate for test audio
TEST_SR = 44100
TEST_FPS = 60


@pytest.fixture
def sample_rate() -> int:
    """Default sample rate for tests."""
    return TEST_SR


@pytest.fixture
def frame_times() -> list[int]:
    """Clock timestamps for ten seconds of 60fps frames (from frame 1)."""
    clock = FrameClock(TEST_FPS)
    return [clock.tick() for _ in range(TEST_FPS * 10)]


@pytest.fixture
def pure_sine(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    Generate a pure 440Hz sine wave (A4 note).

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    duration = 2.0
    t = np.linspace(0, duration, int(sample_rate * duration), endpoint=False)
    y = 0.5 * np.sin(2 * np.pi * 440.0 * t)
    return y.astype(np.float32), sample_rate


@pytest.fixture
def burst_signal(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    Digital silence, one decaying 440Hz burst, digital silence.

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    quiet = int(sample_rate * 0.6)
    burst_len = int(sample_rate * 0.3)

    t = np.arange(burst_len) / sample_rate
    burst = 0.6 * np.sin(2 * np.pi * 440.0 * t) * np.exp(-t * 12)

    y = np.concatenate([
        np.zeros(quiet),
        burst,
        np.zeros(quiet * 2),
    ])
    return y.astype(np.float32), sample_rate


@pytest.fixture
def burst_trace() -> list[float]:
    """
    Calibrated level trace: a 0.1 floor, a one-tick jump to 0.8 and a
    linear decay back to the floor over ten ticks.
    """
    decay = list(np.linspace(0.8, 0.1, 11)[1:])
    return [0.1] * 20 + [0.8] + decay + [0.1] * 40


@pytest.fixture
def harmonic_spectrum() -> np.ndarray:
    """1024-bin byte spectrum of a 220Hz tone with four overtones."""
    spectrum = np.zeros(1024)
    bin_size = 22050.0 / 1024
    for h in range(1, 6):
        spectrum[int(220.0 * h / bin_size)] = 200.0
    return spectrum


@pytest.fixture
def temp_audio_file(tmp_path, burst_signal):
    """Create a temporary audio file for testing file I/O."""
    import soundfile as sf

    y, sr = burst_signal
    audio_path = tmp_path / "test_audio.wav"
    sf.write(audio_path, y, sr)
    return audio_path
