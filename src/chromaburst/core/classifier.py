"""
Sound event classification module.

Summarizes the buffered frames of a sound event into a descriptor:
dominant pitch, pitch-range bucket, intensity, spectral brightness and a
coarse sound-type label.
"""

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

PITCH_RANGES = ("low", "midLow", "midHigh", "high")
SOUND_TYPES = ("snap", "clap", "whistle", "voice", "percussion", "unknown", "manual")


@dataclass(frozen=True)
class SoundFrame:
    """One frame of analysis data held in the detector ring buffer."""

    level: float
    pitch: float
    timestamp_ms: int
    spectrum: np.ndarray | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SoundEventDescriptor:
    """Immutable summary of a detected (or manual) sound event."""

    dominant_pitch: float
    pitch_range: str
    intensity: float
    spectral_centroid: float = 500.0
    sound_type: str = "unknown"
    timestamp_ms: int = 0


@dataclass(frozen=True)
class PitchRangeThresholds:
    """Upper bounds (exclusive) of the low, midLow and midHigh buckets."""

    low: float = 150.0
    mid: float = 300.0
    high: float = 450.0


# Bucket boundaries used alongside spectral sound-type classification
SPECTRAL_PITCH_RANGES = PitchRangeThresholds(low=100.0, mid=300.0, high=500.0)


@dataclass(frozen=True)
class SoundTypeRules:
    """
    Empirical thresholds of the sound-type decision table.

    Rows are evaluated top to bottom; the first match wins.
    """

    snap_centroid: float = 1500.0
    snap_pitch_variation: float = 200.0
    snap_intensity_range: float = 0.3
    clap_centroid: float = 1000.0
    clap_intensity_range: float = 0.4
    whistle_min_pitch: float = 800.0
    whistle_pitch_variation: float = 100.0
    whistle_intensity_range: float = 0.2
    voice_min_pitch: float = 100.0
    voice_max_pitch: float = 800.0
    voice_min_frames: int = 5


@dataclass
class ClassifierConfig:
    """Configuration for EventClassifier."""

    nyquist: float = 22050.0
    min_valid_pitch: float = 80.0
    default_centroid: float = 500.0
    thresholds: PitchRangeThresholds = field(default_factory=PitchRangeThresholds)
    classify_sound_type: bool = True
    rules: SoundTypeRules = field(default_factory=SoundTypeRules)


def pitch_range_for(pitch: float, thresholds: PitchRangeThresholds | None = None) -> str:
    """Bucket a frequency into one of the four ordered pitch ranges."""
    t = thresholds or PitchRangeThresholds()
    if pitch < t.low:
        return "low"
    elif pitch < t.mid:
        return "midLow"
    elif pitch < t.high:
        return "midHigh"
    return "high"


def spectral_centroid(
    spectrum: np.ndarray | None,
    nyquist: float = 22050.0,
    default: float = 500.0,
) -> float:
    """Magnitude-weighted mean bin frequency; default when undefined."""
    if spectrum is None or len(spectrum) == 0:
        return default

    magnitudes = np.asarray(spectrum, dtype=float)
    total = float(magnitudes.sum())
    if total <= 0:
        return default

    freqs = np.arange(len(magnitudes)) * (nyquist / len(magnitudes))
    return float(freqs @ magnitudes / total)


class EventClassifier:
    """Derives qualitative descriptors from an event's buffered frames."""

    def __init__(self, config: ClassifierConfig | None = None):
        self.cfg = config or ClassifierConfig()

    def pitch_range(self, pitch: float) -> str:
        return pitch_range_for(pitch, self.cfg.thresholds)

    def classify_sound_type(
        self,
        centroid: float,
        max_pitch: float,
        pitch_variation: float,
        intensity_range: float,
        n_voiced: int,
    ) -> str:
        """Apply the sound-type decision table."""
        r = self.cfg.rules
        if (
            centroid > r.snap_centroid
            and pitch_variation > r.snap_pitch_variation
            and intensity_range > r.snap_intensity_range
        ):
            return "snap"
        if centroid > r.clap_centroid and intensity_range > r.clap_intensity_range:
            return "clap"
        if (
            max_pitch > r.whistle_min_pitch
            and pitch_variation < r.whistle_pitch_variation
            and intensity_range < r.whistle_intensity_range
        ):
            return "whistle"
        if r.voice_min_pitch < max_pitch < r.voice_max_pitch and n_voiced >= r.voice_min_frames:
            return "voice"
        return "percussion"

    def classify(
        self,
        frames: Sequence[SoundFrame],
        current_pitch: float = 0.0,
        fallback_intensity: float = 0.0,
        timestamp_ms: int = 0,
    ) -> SoundEventDescriptor:
        """
        Summarize an event.

        Args:
            frames: Buffered frames spanning the event, oldest first.
            current_pitch: Pitch estimate used when no frame has a valid pitch.
            fallback_intensity: Intensity used when the buffer is empty.
            timestamp_ms: Time the event closed.

        Returns:
            SoundEventDescriptor for downstream consumers.
        """
        cfg = self.cfg

        if len(frames) == 0:
            return SoundEventDescriptor(
                dominant_pitch=current_pitch,
                pitch_range=self.pitch_range(current_pitch),
                intensity=fallback_intensity,
                spectral_centroid=cfg.default_centroid,
                sound_type="unknown",
                timestamp_ms=timestamp_ms,
            )

        # The floor drops near-DC rumble misreads
        valid = [f.pitch for f in frames if f.pitch > cfg.min_valid_pitch]
        max_pitch = max(valid) if valid else 0.0
        avg_pitch = sum(valid) / len(valid) if valid else 0.0

        if max_pitch > 0:
            dominant = max_pitch
        elif avg_pitch > 0:
            dominant = avg_pitch
        else:
            dominant = current_pitch

        levels = [f.level for f in frames]
        intensity = max(levels)

        latest_spectrum = next(
            (f.spectrum for f in reversed(frames) if f.spectrum is not None), None
        )
        centroid = spectral_centroid(latest_spectrum, cfg.nyquist, cfg.default_centroid)

        if cfg.classify_sound_type:
            sound_type = self.classify_sound_type(
                centroid=centroid,
                max_pitch=max_pitch,
                pitch_variation=max_pitch - avg_pitch,
                intensity_range=intensity - min(levels),
                n_voiced=len(valid),
            )
        else:
            sound_type = "unknown"

        return SoundEventDescriptor(
            dominant_pitch=float(dominant),
            pitch_range=self.pitch_range(dominant),
            intensity=float(intensity),
            spectral_centroid=centroid,
            sound_type=sound_type,
            timestamp_ms=timestamp_ms,
        )
