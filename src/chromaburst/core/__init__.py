"""Core signal-to-event processing modules."""

from chromaburst.core.classifier import EventClassifier, SoundEventDescriptor, SoundFrame
from chromaburst.core.clock import FrameClock, Scheduler
from chromaburst.core.detector import DetectorState, SoundEventDetector
from chromaburst.core.level import LevelProcessor
from chromaburst.core.pitch import PitchEstimator, select_pitch_source

__all__ = [
    "DetectorState",
    "EventClassifier",
    "FrameClock",
    "LevelProcessor",
    "PitchEstimator",
    "Scheduler",
    "SoundEventDescriptor",
    "SoundEventDetector",
    "SoundFrame",
    "select_pitch_source",
]
