"""
Scale tables and note-frequency helpers for the reactive music engine.
"""

import librosa
import numpy as np

MIDDLE_C_HZ = 261.63

# Semitone offsets of the seven scale degrees
MODES: dict[str, tuple[int, ...]] = {
    "major": (0, 2, 4, 5, 7, 9, 11),
    "minor": (0, 2, 3, 5, 7, 8, 10),
    "mixolydian": (0, 2, 4, 5, 7, 9, 10),
    "dorian": (0, 2, 3, 5, 7, 9, 10),
    "lydian": (0, 2, 4, 6, 7, 9, 11),
}

# Event-driven mode shifts walk this ladder, darker to brighter
MODE_LADDER = ("minor", "major", "mixolydian")

# MIDI note sets for event phrases, one pentatonic scale per pitch range
PHRASE_SCALES: dict[str, tuple[int, ...]] = {
    "low": (60, 62, 64, 67, 69),  # C major pentatonic
    "midLow": (62, 64, 66, 69, 71),  # D pentatonic
    "midHigh": (64, 67, 69, 72, 74),  # E minor pentatonic
    "high": (67, 69, 71, 74, 76),  # G major pentatonic
}


def scale_note(degree: int, octave: int, mode: str = "major", key: int = 0) -> float:
    """
    Frequency of a signed scale degree.

    Degrees outside 0..6 wrap into neighbouring octaves, so degree 7 is the
    root one octave up and degree -1 is the seventh one octave down.

    Args:
        degree: Scale degree relative to the root.
        octave: Octave number (4 = middle C octave).
        mode: Key of MODES.
        key: Root transposition in semitones above C.

    Returns:
        Frequency in Hz.
    """
    intervals = MODES.get(mode, MODES["major"])
    n = len(intervals)
    octave_shift, index = divmod(int(degree), n)
    semitones = intervals[index] + key
    return MIDDLE_C_HZ * 2 ** ((octave + octave_shift - 4) + semitones / 12)


def brighter_mode(mode: str) -> str:
    """Next mode up the ladder (unchanged at the top or off-ladder)."""
    if mode not in MODE_LADDER:
        return mode
    i = MODE_LADDER.index(mode)
    return MODE_LADDER[min(i + 1, len(MODE_LADDER) - 1)]


def darker_mode(mode: str) -> str:
    """Next mode down the ladder (unchanged at the bottom or off-ladder)."""
    if mode not in MODE_LADDER:
        return mode
    i = MODE_LADDER.index(mode)
    return MODE_LADDER[max(i - 1, 0)]


def phrase_frequencies(midi_notes, key: int = 0) -> np.ndarray:
    """Convert phrase MIDI notes, transposed by key, to Hz."""
    return librosa.midi_to_hz(np.asarray(midi_notes, dtype=float) + key)


def note_name(frequency: float) -> str:
    """Nearest note name for a frequency, or '-' for silence."""
    if frequency <= 0:
        return "-"
    return librosa.hz_to_note(frequency)
