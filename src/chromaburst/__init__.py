"""Sound-reactive fireworks and generative music engine."""

from chromaburst.engine import EngineConfig, ReactiveEngine, Telemetry, make_config
from chromaburst.io.exporter import SessionExporter
from chromaburst.pipeline import ReplayPipeline
from chromaburst.session import SessionRecorder

__version__ = "0.1.0"
__all__ = [
    "EngineConfig",
    "ReactiveEngine",
    "Telemetry",
    "make_config",
    "SessionExporter",
    "SessionRecorder",
    "ReplayPipeline",
]
