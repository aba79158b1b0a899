"""
Session recording.

Collects everything a run of the engine produced (sound events, notes and
per-frame telemetry) so it can be exported after the fact.
"""

from dataclasses import dataclass, field
from typing import Tuple

from chromaburst.core.classifier import SoundEventDescriptor
from chromaburst.engine import ReactiveEngine, Telemetry
from chromaburst.music.engine import NoteEvent


@dataclass(frozen=True)
class RecordedEvent:
    """A sound event together with where it was launched."""

    frame_index: int
    position: Tuple[float, float]
    descriptor: SoundEventDescriptor


@dataclass
class SessionRecording:
    """Everything captured from one engine run."""

    fps: int
    events: list[RecordedEvent] = field(default_factory=list)
    notes: list[NoteEvent] = field(default_factory=list)
    frames: list[Telemetry] = field(default_factory=list)

    @property
    def n_frames(self) -> int:
        return len(self.frames)

    @property
    def duration(self) -> float:
        return self.n_frames / self.fps if self.fps else 0.0


class SessionRecorder:
    """
    Hooks into a ReactiveEngine and records its output.

    Call capture() once after every tick to store that frame's telemetry.
    A note listener already installed on the engine keeps receiving notes.
    """

    def __init__(self, engine: ReactiveEngine, capture_frames: bool = True):
        self.engine = engine
        self.capture_frames = capture_frames
        self.recording = SessionRecording(fps=engine.cfg.fps)

        engine.event_listeners.append(self._on_event)
        self._next_note_listener = engine.music.note_listener
        engine.music.note_listener = self._on_note

    def _on_event(self, descriptor: SoundEventDescriptor, position: Tuple[float, float]):
        self.recording.events.append(
            RecordedEvent(
                frame_index=max(self.engine.clock.frame - 1, 0),
                position=(float(position[0]), float(position[1])),
                descriptor=descriptor,
            )
        )

    def _on_note(self, note: NoteEvent):
        self.recording.notes.append(note)
        if self._next_note_listener is not None:
            self._next_note_listener(note)

    def capture(self) -> Telemetry:
        telemetry = self.engine.telemetry()
        if self.capture_frames:
            self.recording.frames.append(telemetry)
        return telemetry
