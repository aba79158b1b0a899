"""
Reactive generative music engine.

Four independently timed voices share one tempo:

- Bass: every bar of 16ths, unconditionally.
- Melody: faster as event activity rises, with a keep-alive when quiet.
- Harmony: a strummed triad every two bars, with a longer keep-alive.
- Percussion: only while a sound event is being analyzed and loud.

Tempo and density follow recent sound-event activity; pattern mutation
aggressiveness follows session time (complexity). Each detected event
also queues a short ascending phrase keyed by its pitch range.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Protocol

import numpy as np

from chromaburst.core.classifier import SoundEventDescriptor
from chromaburst.core.clock import Scheduler
from chromaburst.core.level import lerp, map_range
from chromaburst.music.theory import (
    PHRASE_SCALES,
    brighter_mode,
    darker_mode,
    phrase_frequencies,
    scale_note,
)

logger = logging.getLogger(__name__)

VOICES = ("bass", "melody", "harmony", "percussion")

DEFAULT_BASS_PATTERN = (0, 0, 4, 3)
DEFAULT_MELODY_SEQUENCE = (0, 2, 4, 2, 5, 4, 2, 0)
DEFAULT_HARMONY_PROGRESSION = (0, 3, 4, 0)  # I IV V I


class TonePlayer(Protocol):
    """Fire-and-forget synthesizer collaborator. May raise."""

    def play(self, frequency: float, velocity: float, start_offset: float, duration: float): ...


@dataclass
class MusicConfig:
    """Configuration for ReactiveMusicEngine."""

    enabled: bool = True
    key: int = 0  # Semitones above C
    mode: str = "major"
    initial_tempo: float = 100.0
    min_tempo: float = 80.0
    max_tempo: float = 140.0
    tempo_smoothing: float = 0.02

    # Activity / complexity
    activity_window_ms: float = 5000.0
    activity_full_events: int = 10
    complexity_ramp_s: float = 120.0
    min_complexity: float = 0.1
    max_complexity: float = 1.0

    # Voice gates
    melody_activity_floor: float = 0.1
    melody_keepalive_ms: float = 4000.0
    harmony_activity_floor: float = 0.05
    harmony_keepalive_ms: float = 6000.0
    percussion_level_floor: float = 0.3
    percussion_spacing_ms: float = 200.0
    strum_ms: float = 40.0

    # Event phrases
    phrase_delay_ms: float = 100.0
    phrase_spacing_ms: float = 150.0
    mode_shift_chance: float = 0.3
    frequency_threshold: float = 90.0
    energy_threshold: float = 0.12

    # Pattern evolution
    evolution_interval_ms: float = 8000.0
    evolution_min_complexity: float = 0.3
    growth_min_complexity: float = 0.7
    bass_mutation_chance: float = 0.3
    melody_mutation_chance: float = 0.4
    growth_chance: float = 0.2
    bass_capacity: int = 8
    melody_capacity: int = 12

    # Event history
    recent_history: int = 20
    long_history: int = 50


@dataclass(frozen=True)
class EventRecord:
    timestamp_ms: int
    pitch_range: str
    intensity: float
    sound_type: str


class EventHistory:
    """Bounded FIFOs of recent and longer-term sound events."""

    def __init__(self, recent_size: int = 20, long_size: int = 50):
        self.recent: deque[EventRecord] = deque(maxlen=recent_size)
        self.long: deque[EventRecord] = deque(maxlen=long_size)

    def __len__(self) -> int:
        return len(self.long)

    def record(self, descriptor: SoundEventDescriptor, now_ms: int) -> EventRecord:
        record = EventRecord(
            timestamp_ms=int(now_ms),
            pitch_range=descriptor.pitch_range,
            intensity=descriptor.intensity,
            sound_type=descriptor.sound_type,
        )
        self.recent.append(record)
        self.long.append(record)
        return record

    def count_since(self, since_ms: float) -> int:
        return sum(1 for r in self.recent if r.timestamp_ms > since_ms)

    def clear(self):
        self.recent.clear()
        self.long.clear()


@dataclass(frozen=True)
class NoteEvent:
    """A note handed to the tone player."""

    time_ms: float
    voice: str
    frequency: float
    velocity: float
    duration: float


@dataclass
class MusicSystemState:
    """Sequencer state, owned by ReactiveMusicEngine."""

    enabled: bool = True
    key: int = 0
    mode: str = "major"
    tempo: float = 100.0
    complexity: float = 0.1
    activity: float = 0.0
    session_start_ms: float | None = None
    last_evolution_ms: float = 0.0
    last_trigger_ms: dict[str, float] = field(default_factory=lambda: dict.fromkeys(VOICES, 0.0))
    positions: dict[str, int] = field(default_factory=lambda: dict.fromkeys(VOICES, 0))
    bass_pattern: list[int] = field(default_factory=lambda: list(DEFAULT_BASS_PATTERN))
    melody_sequence: list[int] = field(default_factory=lambda: list(DEFAULT_MELODY_SEQUENCE))
    harmony_progression: list[int] = field(
        default_factory=lambda: list(DEFAULT_HARMONY_PROGRESSION)
    )


class ReactiveMusicEngine:
    """
    Multi-voice sequencer driven by sound-event history and session time.

    Playback goes through a TonePlayer; a failing player is logged and the
    note skipped, while positions and timers still advance.
    """

    def __init__(
        self,
        config: MusicConfig | None = None,
        player: TonePlayer | None = None,
        scheduler: Scheduler | None = None,
        seed: int | None = None,
        note_listener: Callable[[NoteEvent], None] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Music configuration.
            player: Tone player; None plays nothing (notes still reported).
            scheduler: Shared deferred-call queue (default: private one).
            seed: Seed for pattern evolution and phrase choices.
            note_listener: Called with every NoteEvent that was played.
        """
        self.cfg = config or MusicConfig()
        self.player = player
        self.scheduler = scheduler if scheduler is not None else Scheduler()
        self.rng = np.random.default_rng(seed)
        self.note_listener = note_listener

        self.state = self._initial_state()
        self.history = EventHistory(self.cfg.recent_history, self.cfg.long_history)
        self.frequency_threshold = self.cfg.frequency_threshold
        self.energy_threshold = self.cfg.energy_threshold

        self.notes_played = 0
        self.failed_notes = 0

    def _initial_state(self) -> MusicSystemState:
        cfg = self.cfg
        return MusicSystemState(
            enabled=cfg.enabled,
            key=cfg.key,
            mode=cfg.mode,
            tempo=cfg.initial_tempo,
            complexity=cfg.min_complexity,
        )

    @property
    def enabled(self) -> bool:
        return self.state.enabled

    @enabled.setter
    def enabled(self, value: bool):
        self.state.enabled = bool(value)

    @property
    def beat_interval_ms(self) -> float:
        """Length of a 16th note at the current tempo."""
        return 60000.0 / self.state.tempo / 4

    def target_tempo(self) -> float:
        cfg = self.cfg
        return map_range(self.state.activity, 0, 1, cfg.min_tempo, cfg.max_tempo)

    def get_scale_note(self, degree: int, octave: int) -> float:
        """Frequency of a scale degree in the current key and mode."""
        return scale_note(degree, octave, self.state.mode, self.state.key)

    # ------------------------------------------------------------------
    # Per-tick update

    def update(self, now_ms: float, smooth_level: float = 0.0, event_active: bool = False):
        """
        Advance the sequencer to now_ms.

        Args:
            now_ms: Current clock time.
            smooth_level: Smoothed input level in [0, 1].
            event_active: True while the detector is analyzing an event.
        """
        state = self.state
        cfg = self.cfg

        if state.session_start_ms is None:
            state.session_start_ms = now_ms
            state.last_evolution_ms = now_ms
            for voice in VOICES:
                state.last_trigger_ms[voice] = now_ms

        self.scheduler.drain(now_ms)

        recent = self.history.count_since(now_ms - cfg.activity_window_ms)
        state.activity = float(np.clip(map_range(recent, 0, cfg.activity_full_events, 0, 1), 0, 1))

        elapsed_s = (now_ms - state.session_start_ms) / 1000.0
        state.complexity = float(
            np.clip(
                map_range(elapsed_s, 0, cfg.complexity_ramp_s, cfg.min_complexity, cfg.max_complexity),
                cfg.min_complexity,
                cfg.max_complexity,
            )
        )

        state.tempo = lerp(state.tempo, self.target_tempo(), cfg.tempo_smoothing)

        if now_ms - state.last_evolution_ms >= cfg.evolution_interval_ms:
            state.last_evolution_ms = now_ms
            if state.complexity >= cfg.evolution_min_complexity:
                self.evolve_patterns()

        if not state.enabled:
            return

        beat = self.beat_interval_ms
        last = state.last_trigger_ms

        if now_ms - last["bass"] >= 4 * beat:
            self._trigger_bass(now_ms, beat)

        melody_interval = beat * (4 - state.activity * 3)
        if now_ms - last["melody"] >= melody_interval and (
            state.activity > cfg.melody_activity_floor
            or now_ms - last["melody"] >= cfg.melody_keepalive_ms
        ):
            self._trigger_melody(now_ms, beat)

        if now_ms - last["harmony"] >= 8 * beat and (
            state.activity > cfg.harmony_activity_floor
            or now_ms - last["harmony"] >= cfg.harmony_keepalive_ms
        ):
            self._trigger_harmony(now_ms, beat)

        if (
            event_active
            and smooth_level > cfg.percussion_level_floor
            and now_ms - last["percussion"] >= cfg.percussion_spacing_ms
        ):
            self._trigger_percussion(now_ms, smooth_level)

    def _advance(self, voice: str, pattern: list[int]) -> int:
        """Return the current pattern slot for a voice and step past it."""
        state = self.state
        position = state.positions[voice] % len(pattern)
        state.positions[voice] = (position + 1) % len(pattern)
        return pattern[position]

    def _trigger_bass(self, now_ms: float, beat: float):
        self.state.last_trigger_ms["bass"] = now_ms
        degree = self._advance("bass", self.state.bass_pattern)
        self.play_note("bass", self.get_scale_note(degree, 2), 0.3, beat * 3 / 1000.0, now_ms)

    def _trigger_melody(self, now_ms: float, beat: float):
        state = self.state
        state.last_trigger_ms["melody"] = now_ms
        degree = self._advance("melody", state.melody_sequence)
        octave = 5 if state.activity > 0.6 else 4
        velocity = map_range(state.activity, 0, 1, 0.2, 0.4)
        self.play_note("melody", self.get_scale_note(degree, octave), velocity, beat * 2 / 1000.0, now_ms)

    def _trigger_harmony(self, now_ms: float, beat: float):
        state = self.state
        state.last_trigger_ms["harmony"] = now_ms
        root = self._advance("harmony", state.harmony_progression)
        duration = beat * 8 / 1000.0

        # Resolve the chord now so a later mode change does not split it
        chord = [self.get_scale_note(root + step, 3) for step in (0, 2, 4)]
        self.play_note("harmony", chord[0], 0.12, duration, now_ms)
        for i, frequency in enumerate(chord[1:], start=1):
            fire_ms = now_ms + i * self.cfg.strum_ms
            self.scheduler.schedule(
                fire_ms, self.play_note, "harmony", frequency, 0.12, duration, fire_ms, label="strum"
            )

    def _trigger_percussion(self, now_ms: float, smooth_level: float):
        self.state.last_trigger_ms["percussion"] = now_ms
        if smooth_level > 0.6:
            frequency, duration = self.get_scale_note(0, 2), 0.08
        else:
            frequency, duration = self.get_scale_note(4, 6), 0.05
        velocity = map_range(smooth_level, 0, 1, 0.1, 0.5)
        self.play_note("percussion", frequency, velocity, duration, now_ms)

    def play_note(
        self,
        voice: str,
        frequency: float,
        velocity: float,
        duration: float,
        now_ms: float,
    ) -> bool:
        """
        Hand one note to the tone player.

        Returns:
            False if the player raised (the note is skipped).
        """
        if self.player is not None:
            try:
                self.player.play(frequency, velocity, 0, duration)
            except Exception as e:
                self.failed_notes += 1
                logger.warning("Tone player failed on %s note %.1fHz: %s", voice, frequency, e)
                return False

        self.notes_played += 1
        if self.note_listener is not None:
            self.note_listener(
                NoteEvent(
                    time_ms=now_ms,
                    voice=voice,
                    frequency=float(frequency),
                    velocity=float(velocity),
                    duration=float(duration),
                )
            )
        return True

    # ------------------------------------------------------------------
    # Event reactions

    def record_event(self, descriptor: SoundEventDescriptor, now_ms: float):
        """
        Register a sound event: history, mode drift and a reply phrase.
        """
        self.history.record(descriptor, now_ms)
        if not self.state.enabled:
            return

        if descriptor.pitch_range == "high" and self.rng.random() < self.cfg.mode_shift_chance:
            self._shift_mode(brighter_mode(self.state.mode))
        elif descriptor.pitch_range == "low" and self.rng.random() < self.cfg.mode_shift_chance:
            self._shift_mode(darker_mode(self.state.mode))

        if self.phrase_allowed(descriptor):
            self.schedule_phrase(descriptor, now_ms)

    def phrase_allowed(self, descriptor: SoundEventDescriptor) -> bool:
        """Quiet events and low rumbles get no reply phrase."""
        if descriptor.intensity < self.energy_threshold:
            return False
        pitch = descriptor.dominant_pitch
        return not (0 < pitch < self.frequency_threshold)

    def _shift_mode(self, mode: str):
        if mode != self.state.mode:
            logger.info("Mode shift %s -> %s", self.state.mode, mode)
            self.state.mode = mode

    def schedule_phrase(self, descriptor: SoundEventDescriptor, now_ms: float) -> int:
        """Queue a short ascending phrase; returns the number of notes."""
        cfg = self.cfg
        scale = PHRASE_SCALES.get(descriptor.pitch_range, PHRASE_SCALES["low"])
        n_notes = int(self.rng.integers(3, 5))
        midi = np.sort(self.rng.choice(scale, size=n_notes, replace=False))
        frequencies = phrase_frequencies(midi, self.state.key)
        velocity = map_range(float(np.clip(descriptor.intensity, 0, 1)), 0, 1, 0.15, 0.5)

        start = now_ms + cfg.phrase_delay_ms
        for i, frequency in enumerate(frequencies):
            fire_ms = start + i * cfg.phrase_spacing_ms
            self.scheduler.schedule(
                fire_ms, self.play_note, "phrase", float(frequency), velocity, 0.3, fire_ms, label="phrase"
            )
        return n_notes

    # ------------------------------------------------------------------
    # Pattern evolution

    def evolve_patterns(self):
        """Mutate (and, late in a session, grow) the bass and melody patterns."""
        cfg = self.cfg
        state = self.state

        if self.rng.random() < cfg.bass_mutation_chance:
            slot = int(self.rng.integers(len(state.bass_pattern)))
            state.bass_pattern[slot] = int(self.rng.integers(0, 7))

        if self.rng.random() < cfg.melody_mutation_chance:
            slot = int(self.rng.integers(len(state.melody_sequence)))
            state.melody_sequence[slot] = int(self.rng.integers(-3, 10))

        if state.complexity > cfg.growth_min_complexity:
            if self.rng.random() < cfg.growth_chance and len(state.bass_pattern) < cfg.bass_capacity:
                state.bass_pattern.append(int(self.rng.integers(0, 7)))
            if self.rng.random() < cfg.growth_chance and len(state.melody_sequence) < cfg.melody_capacity:
                state.melody_sequence.append(int(self.rng.integers(-3, 10)))

        logger.debug(
            "Patterns evolved: bass=%s melody=%s", state.bass_pattern, state.melody_sequence
        )

    def reset_patterns(self):
        """Restore default patterns, mode, tempo and voice positions."""
        enabled = self.state.enabled
        session_start = self.state.session_start_ms
        last_evolution = self.state.last_evolution_ms
        last_trigger = dict(self.state.last_trigger_ms)

        self.state = self._initial_state()
        self.state.enabled = enabled
        self.state.session_start_ms = session_start
        self.state.last_evolution_ms = last_evolution
        self.state.last_trigger_ms = last_trigger

    def adjust_frequency_threshold(self, delta: float) -> float:
        self.frequency_threshold = float(np.clip(self.frequency_threshold + delta, 20.0, 200.0))
        return self.frequency_threshold

    def adjust_energy_threshold(self, delta: float) -> float:
        self.energy_threshold = float(np.clip(self.energy_threshold + delta, 0.01, 0.5))
        return self.energy_threshold
