"""Audio input/output adapters and session export."""

from chromaburst.io.exporter import SessionExporter
from chromaburst.io.sources import (
    ArrayFrameSource,
    AudioFrame,
    RecordingTonePlayer,
    SpectrumAnalyzer,
    load_audio,
)

__all__ = [
    "ArrayFrameSource",
    "AudioFrame",
    "RecordingTonePlayer",
    "SessionExporter",
    "SpectrumAnalyzer",
    "load_audio",
]
