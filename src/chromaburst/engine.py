"""
Top-level reactive engine.

Composes level processing, pitch estimation, event detection, fireworks
and music around a single injected frame clock. A host calls tick() once
per frame with the raw amplitude and spectrum it captured; everything
else happens synchronously inside that call.
"""

import copy
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Tuple, Union

import numpy as np

from chromaburst.core.classifier import (
    ClassifierConfig,
    EventClassifier,
    PitchRangeThresholds,
    SoundEventDescriptor,
    SoundTypeRules,
)
from chromaburst.core.clock import FrameClock, Scheduler
from chromaburst.core.detector import DetectorConfig, SoundEventDetector
from chromaburst.core.level import CalibrationParams, LevelConfig, LevelProcessor
from chromaburst.core.pitch import PitchConfig, PitchSource, select_pitch_source
from chromaburst.fireworks import Firework, FireworkConfig, FireworkEngine, Particle
from chromaburst.music.engine import MusicConfig, NoteEvent, ReactiveMusicEngine, TonePlayer
from chromaburst.music.theory import note_name

logger = logging.getLogger(__name__)

EventListener = Callable[[SoundEventDescriptor, Tuple[float, float]], None]

# Nested dataclass fields that from_dict must build recursively
_NESTED = {
    (LevelConfig, "calibration"): CalibrationParams,
    (ClassifierConfig, "thresholds"): PitchRangeThresholds,
    (ClassifierConfig, "rules"): SoundTypeRules,
}


def _build(cls, data: dict[str, Any], path: str):
    """Instantiate a config dataclass from a (possibly partial) dict."""
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown config keys in {path or 'root'}: {sorted(unknown)}")

    kwargs = {}
    defaults = cls()
    for name, value in data.items():
        nested = _NESTED.get((cls, name))
        if nested is not None and isinstance(value, dict):
            value = _build(nested, value, f"{path}.{name}")
        elif isinstance(value, list) and isinstance(getattr(defaults, name), tuple):
            value = tuple(value)
        kwargs[name] = value
    return cls(**kwargs)


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class EngineConfig:
    """Configuration for every component of the reactive engine."""

    fps: int = 60
    width: int = 1400
    height: int = 800

    level: LevelConfig = field(default_factory=LevelConfig)
    pitch: PitchConfig = field(default_factory=PitchConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    fireworks: FireworkConfig = field(default_factory=FireworkConfig)
    music: MusicConfig = field(default_factory=MusicConfig)

    _SECTIONS = {
        "level": LevelConfig,
        "pitch": PitchConfig,
        "detector": DetectorConfig,
        "classifier": ClassifierConfig,
        "fireworks": FireworkConfig,
        "music": MusicConfig,
    }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        """
        Build a config from a nested dict; missing keys keep defaults.

        Raises:
            ValueError: On keys that no config field matches.
        """
        kwargs = {}
        for key, value in data.items():
            if key in cls._SECTIONS:
                kwargs[key] = _build(cls._SECTIONS[key], value or {}, key)
            elif key in ("fps", "width", "height"):
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown config section: {key}")
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


# Named variants of the detector/classifier tuning
PRESETS: dict[str, dict[str, Any]] = {
    "classic": {
        "classifier": {"classify_sound_type": False},
    },
    "spectral": {
        "classifier": {
            "classify_sound_type": True,
            "thresholds": {"low": 100.0, "mid": 300.0, "high": 500.0},
        },
    },
}


def make_config(
    preset: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> EngineConfig:
    """Combine a named preset with explicit overrides."""
    data: dict[str, Any] = {}
    if preset is not None:
        if preset not in PRESETS:
            raise ValueError(f"Unknown preset '{preset}', choose from {sorted(PRESETS)}")
        data = copy.deepcopy(PRESETS[preset])
    if overrides:
        data = _merge(data, overrides)
    return EngineConfig.from_dict(data)


def load_engine_config(path: Union[str, Path], preset: str | None = None) -> EngineConfig:
    """Load a JSON config file, layered on top of an optional preset."""
    with open(path, "r", encoding="utf-8") as f:
        overrides = json.load(f)
    return make_config(preset, overrides)


@dataclass(frozen=True)
class Telemetry:
    """Read-only snapshot for the presentation layer."""

    time_ms: int
    raw_level: float
    level: float
    smooth_level: float
    peak_hold: float
    pitch: float
    note: str
    sensitivity: float
    detector_state: str
    buffer_fill: int
    n_fireworks: int
    n_particles: int
    music_enabled: bool
    mic_enabled: bool
    mode: str
    tempo: float
    activity: float
    complexity: float


class ReactiveEngine:
    """
    Sound-reactive fireworks and music, one tick at a time.

    Owns the clock, scheduler and every component's state; nothing is
    global, so independent engines can run side by side.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        player: TonePlayer | None = None,
        pitch_source: PitchSource | None = None,
        seed: int | None = None,
        note_listener: Callable[[NoteEvent], None] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration (default: EngineConfig()).
            player: Tone player for the music engine.
            pitch_source: Pitch source; default is the FFT estimator.
            seed: Seed for every random choice (positions, bursts, music).
            note_listener: Receives every note the music engine plays.
        """
        self.cfg = config or EngineConfig()
        cfg = self.cfg

        firework_seed, music_seed, engine_seed = (
            int(s) for s in np.random.SeedSequence(seed).generate_state(3)
        )
        self.rng = np.random.default_rng(engine_seed)

        self.clock = FrameClock(cfg.fps)
        self.scheduler = Scheduler()
        self.level_processor = LevelProcessor(cfg.level)
        self.pitch_source = pitch_source or select_pitch_source(config=cfg.pitch)
        self.classifier = EventClassifier(cfg.classifier)
        self.detector = SoundEventDetector(cfg.detector, self.classifier)
        self.firework_engine = FireworkEngine(cfg.fireworks, seed=firework_seed)
        self.music = ReactiveMusicEngine(
            cfg.music,
            player=player,
            scheduler=self.scheduler,
            seed=music_seed,
            note_listener=note_listener,
        )

        self.mic_enabled = True
        self.event_listeners: list[EventListener] = []

    # ------------------------------------------------------------------
    # Telemetry

    @property
    def now_ms(self) -> int:
        return self.clock.now_ms

    @property
    def smooth_level(self) -> float:
        return self.level_processor.state.smooth_level

    @property
    def peak_hold(self) -> float:
        return self.level_processor.state.peak_hold

    @property
    def pitch(self) -> float:
        return self.pitch_source.pitch

    @property
    def sensitivity(self) -> float:
        return self.level_processor.state.sensitivity

    @property
    def fireworks(self) -> list[Firework]:
        return self.firework_engine.fireworks

    @property
    def particles(self) -> list[Particle]:
        return self.firework_engine.particles

    def telemetry(self) -> Telemetry:
        level = self.level_processor.state
        music = self.music.state
        return Telemetry(
            time_ms=self.now_ms,
            raw_level=level.raw_level,
            level=level.calibrated_level,
            smooth_level=level.smooth_level,
            peak_hold=level.peak_hold,
            pitch=self.pitch,
            note=note_name(self.pitch),
            sensitivity=level.sensitivity,
            detector_state=self.detector.state.value,
            buffer_fill=len(self.detector.buffer),
            n_fireworks=len(self.fireworks),
            n_particles=len(self.particles),
            music_enabled=music.enabled,
            mic_enabled=self.mic_enabled,
            mode=music.mode,
            tempo=music.tempo,
            activity=music.activity,
            complexity=music.complexity,
        )

    # ------------------------------------------------------------------
    # Frame processing

    def tick(
        self,
        raw_level: float,
        spectrum: np.ndarray | None = None,
    ) -> SoundEventDescriptor | None:
        """
        Process one frame.

        Args:
            raw_level: Raw amplitude in [0, 1].
            spectrum: Magnitude spectrum over [0, nyquist], or None.

        Returns:
            The descriptor of a sound event that closed this frame, if any.
        """
        now = self.clock.tick()

        if not self.mic_enabled:
            raw_level, spectrum = 0.0, None

        level = self.level_processor.update(raw_level, now)
        pitch = self.pitch_source.estimate(spectrum)

        descriptor = self.detector.update(
            level,
            pitch,
            now,
            spectrum=spectrum,
            fallback_intensity=self.smooth_level,
        )
        if descriptor is not None:
            self._dispatch(descriptor, self.event_position())

        self.music.update(now, self.smooth_level, self.detector.analyzing)
        self.firework_engine.update()
        return descriptor

    def event_position(self) -> Tuple[float, float]:
        """Random launch point in the middle of the stage."""
        w, h = self.cfg.width, self.cfg.height
        return (
            float(self.rng.uniform(w * 0.2, w * 0.8)),
            float(self.rng.uniform(h * 0.3, h * 0.7)),
        )

    def _dispatch(self, descriptor: SoundEventDescriptor, position: Tuple[float, float]):
        self.firework_engine.trigger_firework(position, descriptor)
        self.music.record_event(descriptor, self.now_ms)
        for listener in self.event_listeners:
            listener(descriptor, position)

    def manual_trigger(
        self,
        position: Tuple[float, float] | None = None,
        pitch_hint: float | None = None,
    ) -> SoundEventDescriptor:
        """
        Fire the event path without detection.

        Uses pitch_hint, else the last known pitch, else a random
        mid-range pitch; intensity is the current smoothed level.
        """
        pitch = pitch_hint or self.pitch or float(self.rng.uniform(200, 800))
        if position is None:
            position = (
                float(self.rng.uniform(0, self.cfg.width)),
                float(self.rng.uniform(0, self.cfg.height / 2)),
            )

        descriptor = SoundEventDescriptor(
            dominant_pitch=float(pitch),
            pitch_range=self.classifier.pitch_range(pitch),
            intensity=self.smooth_level,
            spectral_centroid=self.classifier.cfg.default_centroid,
            sound_type="manual",
            timestamp_ms=self.now_ms,
        )
        self._dispatch(descriptor, position)
        logger.debug("Manual firework at (%.0f, %.0f) %.1fHz", position[0], position[1], pitch)
        return descriptor

    # ------------------------------------------------------------------
    # Controls

    def adjust_sensitivity(self, delta: float):
        value = self.level_processor.adjust_sensitivity(delta)
        logger.info("Sensitivity %.1fx", value)

    def set_music_enabled(self, enabled: bool):
        self.music.enabled = enabled
        logger.info("Reactive music %s", "enabled" if enabled else "disabled")

    def toggle_music(self):
        self.set_music_enabled(not self.music.enabled)

    def set_mic_enabled(self, enabled: bool):
        self.mic_enabled = bool(enabled)
        logger.info("Microphone input %s", "enabled" if enabled else "disabled")

    def toggle_mic(self):
        self.set_mic_enabled(not self.mic_enabled)

    def reset_calibration(self):
        self.level_processor.reset_calibration()
        logger.info("Level calibration reset")

    def reset_music_patterns(self):
        self.music.reset_patterns()
        logger.info("Music patterns reset")

    def adjust_frequency_threshold(self, delta: float):
        value = self.music.adjust_frequency_threshold(delta)
        logger.info("Music frequency threshold %.0fHz", value)

    def adjust_energy_threshold(self, delta: float):
        value = self.music.adjust_energy_threshold(delta)
        logger.info("Music energy threshold %.3f", value)
