"""
Session manifest serialization.

Exports a recorded engine session (sound events, notes and per-frame
telemetry) to JSON, or to a NumPy archive for fast loading in analysis
and rendering tools.
"""

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Union

import numpy as np

from chromaburst.engine import Telemetry
from chromaburst.music.engine import NoteEvent
from chromaburst.session import RecordedEvent, SessionRecording

# Per-frame telemetry fields exported as numeric arrays
NUMERIC_FRAME_FIELDS = (
    "raw_level",
    "level",
    "smooth_level",
    "peak_hold",
    "pitch",
    "sensitivity",
    "buffer_fill",
    "n_fireworks",
    "n_particles",
    "tempo",
    "activity",
    "complexity",
)


@dataclass
class SessionMetadata:
    """Metadata header for the session manifest."""

    duration: float
    fps: int
    n_frames: int
    n_events: int
    n_notes: int
    source: str | None = None
    seed: int | None = None
    preset: str | None = None
    schema_version: str = "1.0"


class SessionExporter:
    """
    Exports a SessionRecording as a manifest.

    The manifest has four sections: metadata, events, notes and frames.
    """

    def __init__(self, precision: int = 4):
        """
        Initialize the exporter.

        Args:
            precision: Decimal places for floating point values.
        """
        self.precision = precision

    def _round(self, value: float) -> float:
        """Round to configured precision."""
        return round(float(value), self.precision)

    def _build_event(self, event: RecordedEvent) -> dict[str, Any]:
        d = event.descriptor
        return {
            "frame_index": event.frame_index,
            "time_ms": d.timestamp_ms,
            "x": self._round(event.position[0]),
            "y": self._round(event.position[1]),
            "dominant_pitch": self._round(d.dominant_pitch),
            "pitch_range": d.pitch_range,
            "intensity": self._round(d.intensity),
            "spectral_centroid": self._round(d.spectral_centroid),
            "sound_type": d.sound_type,
        }

    def _build_note(self, note: NoteEvent) -> dict[str, Any]:
        return {
            "time_ms": self._round(note.time_ms),
            "voice": note.voice,
            "frequency": self._round(note.frequency),
            "velocity": self._round(note.velocity),
            "duration": self._round(note.duration),
        }

    def _build_frame(self, index: int, telemetry: Telemetry, fps: int) -> dict[str, Any]:
        frame: dict[str, Any] = {
            "frame_index": index,
            "time": self._round(index / fps),
        }
        for name, value in asdict(telemetry).items():
            if isinstance(value, float):
                value = self._round(value)
            frame[name] = value
        return frame

    def build_manifest(
        self,
        recording: SessionRecording,
        source: str | None = None,
        seed: int | None = None,
        preset: str | None = None,
    ) -> dict[str, Any]:
        """
        Build the complete manifest dictionary.

        Args:
            recording: Captured session.
            source: Name of the audio the session was driven by.
            seed: Engine seed, for reproducing the run.
            preset: Config preset name, if any.

        Returns:
            Manifest dictionary ready for serialization.
        """
        metadata = SessionMetadata(
            duration=self._round(recording.duration),
            fps=recording.fps,
            n_frames=recording.n_frames,
            n_events=len(recording.events),
            n_notes=len(recording.notes),
            source=source,
            seed=seed,
            preset=preset,
        )

        return {
            "metadata": asdict(metadata),
            "events": [self._build_event(e) for e in recording.events],
            "notes": [self._build_note(n) for n in recording.notes],
            "frames": [
                self._build_frame(i, t, recording.fps) for i, t in enumerate(recording.frames)
            ],
        }

    def export_json(
        self,
        manifest: dict[str, Any],
        output_path: Union[str, Path],
        indent: int = 2,
    ) -> Path:
        """
        Write a manifest to a JSON file.

        Args:
            manifest: Manifest from build_manifest().
            output_path: Path for output JSON file.
            indent: JSON indentation level.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=indent)
        return output_path

    def export_numpy(
        self,
        manifest: dict[str, Any],
        output_path: Union[str, Path],
    ) -> Path:
        """
        Write a manifest as a NumPy .npz archive of column arrays.

        Frame telemetry becomes one array per field; events and notes
        become event_* and note_* arrays.

        Args:
            manifest: Manifest from build_manifest().
            output_path: Path for output .npz file.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        frames = manifest["frames"]
        events = manifest["events"]
        notes = manifest["notes"]
        metadata = manifest["metadata"]

        arrays: dict[str, np.ndarray] = {
            name: np.array([f[name] for f in frames], dtype=np.float32)
            for name in NUMERIC_FRAME_FIELDS
        }
        arrays["frame_times"] = np.array([f["time"] for f in frames], dtype=np.float32)
        arrays["analyzing"] = np.array(
            [f["detector_state"] == "analyzing" for f in frames], dtype=bool
        )
        arrays["mode"] = np.array([f["mode"] for f in frames], dtype=str)

        arrays["event_frames"] = np.array([e["frame_index"] for e in events], dtype=np.int64)
        for name in ("x", "y", "dominant_pitch", "intensity", "spectral_centroid"):
            arrays[f"event_{name}"] = np.array([e[name] for e in events], dtype=np.float32)
        arrays["event_pitch_range"] = np.array([e["pitch_range"] for e in events], dtype=str)
        arrays["event_sound_type"] = np.array([e["sound_type"] for e in events], dtype=str)

        for name in ("time_ms", "frequency", "velocity", "duration"):
            arrays[f"note_{name}"] = np.array([n[name] for n in notes], dtype=np.float32)
        arrays["note_voice"] = np.array([n["voice"] for n in notes], dtype=str)

        np.savez_compressed(
            output_path,
            fps=metadata["fps"],
            n_frames=metadata["n_frames"],
            duration=metadata["duration"],
            **arrays,
        )
        return output_path

    def to_dict(self, recording: SessionRecording, **metadata) -> dict[str, Any]:
        """Return the manifest as a dictionary (for in-memory use)."""
        return self.build_manifest(recording, **metadata)
