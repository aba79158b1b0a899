"""Reactive generative music."""

from chromaburst.music.engine import MusicConfig, NoteEvent, ReactiveMusicEngine
from chromaburst.music.theory import MODES, scale_note

__all__ = ["MODES", "MusicConfig", "NoteEvent", "ReactiveMusicEngine", "scale_note"]
