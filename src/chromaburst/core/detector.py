"""
Sound event detection module.

A two-state machine watches the calibrated level for sudden rises,
holds a short analysis window, and emits a classified descriptor when
the window closes. Frames are buffered every tick regardless of state so
the classifier sees context from before the onset.
"""

import enum
import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from chromaburst.core.classifier import EventClassifier, SoundEventDescriptor, SoundFrame

logger = logging.getLogger(__name__)


class DetectorState(enum.Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"


@dataclass
class DetectorConfig:
    """Onset and windowing thresholds for SoundEventDetector."""

    peak_sensitivity: float = 0.12  # Minimum one-frame rise
    peak_threshold: float = 0.25  # Minimum absolute level at onset
    cooldown_ms: float = 300.0
    analysis_ms: float = 200.0
    release_ratio: float = 0.5  # Early exit below peak_threshold * ratio
    buffer_size: int = 15  # ~250ms at 60fps
    keep_spectrum: bool = True


class SoundEventDetector:
    """
    Debounced transient detector.

    IDLE -> ANALYZING on a sharp rise above threshold once the cooldown has
    passed; ANALYZING -> IDLE after the analysis window or on early decay.
    """

    def __init__(
        self,
        config: DetectorConfig | None = None,
        classifier: EventClassifier | None = None,
    ):
        self.cfg = config or DetectorConfig()
        self.classifier = classifier or EventClassifier()

        self.state = DetectorState.IDLE
        self.buffer: deque[SoundFrame] = deque(maxlen=self.cfg.buffer_size)
        self.previous_level = 0.0
        self.event_start_ms: float = 0.0
        # Allow an event on the very first frames
        self.last_event_ms: float = -float("inf")
        self.events_emitted = 0

    @property
    def analyzing(self) -> bool:
        return self.state is DetectorState.ANALYZING

    def record_frame(
        self,
        level: float,
        pitch: float,
        now_ms: int,
        spectrum: np.ndarray | None = None,
    ) -> SoundFrame:
        """Append a frame to the ring buffer, evicting the oldest."""
        if spectrum is not None and self.cfg.keep_spectrum:
            spectrum = np.array(spectrum, dtype=float, copy=True)
        else:
            spectrum = None

        frame = SoundFrame(level=level, pitch=pitch, timestamp_ms=int(now_ms), spectrum=spectrum)
        self.buffer.append(frame)
        return frame

    def should_start(self, level: float, now_ms: float) -> bool:
        cfg = self.cfg
        return (
            level - self.previous_level > cfg.peak_sensitivity
            and level > cfg.peak_threshold
            and not self.analyzing
            and now_ms - self.last_event_ms > cfg.cooldown_ms
        )

    def should_finish(self, level: float, now_ms: float) -> bool:
        cfg = self.cfg
        return (
            now_ms - self.event_start_ms >= cfg.analysis_ms
            or level < cfg.peak_threshold * cfg.release_ratio
        )

    def update(
        self,
        level: float,
        pitch: float,
        now_ms: int,
        spectrum: np.ndarray | None = None,
        fallback_intensity: float = 0.0,
    ) -> SoundEventDescriptor | None:
        """
        Feed one frame through the state machine.

        Args:
            level: Calibrated level in [0, 1].
            pitch: Current pitch estimate in Hz.
            now_ms: Current clock time.
            spectrum: Current magnitude spectrum (copied into the buffer).
            fallback_intensity: Intensity reported if the buffer is empty.

        Returns:
            A descriptor on the frame an event closes, otherwise None.
        """
        self.record_frame(level, pitch, now_ms, spectrum)

        descriptor = None

        if self.should_start(level, now_ms):
            self.state = DetectorState.ANALYZING
            self.event_start_ms = now_ms
            logger.debug("Sound event started at %dms (level %.3f)", now_ms, level)

        if self.analyzing and self.should_finish(level, now_ms):
            descriptor = self.classifier.classify(
                list(self.buffer),
                current_pitch=pitch,
                fallback_intensity=fallback_intensity,
                timestamp_ms=int(now_ms),
            )
            self.state = DetectorState.IDLE
            self.last_event_ms = now_ms
            self.events_emitted += 1
            logger.debug(
                "Sound event closed after %dms: %s %.1fHz intensity %.2f",
                now_ms - self.event_start_ms,
                descriptor.sound_type,
                descriptor.dominant_pitch,
                descriptor.intensity,
            )

        self.previous_level = level
        return descriptor

    def reset(self):
        self.state = DetectorState.IDLE
        self.buffer.clear()
        self.previous_level = 0.0
        self.last_event_ms = -float("inf")
