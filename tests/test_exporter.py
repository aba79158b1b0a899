"""Tests for session recording and the SessionExporter module."""

import json

import numpy as np
import pytest

from chromaburst.engine import ReactiveEngine
from chromaburst.io.exporter import SessionExporter
from chromaburst.io.sources import RecordingTonePlayer
from chromaburst.session import SessionRecorder


@pytest.fixture
def recording():
    """A short session with one detected and one manual event."""
    engine = ReactiveEngine(seed=0, player=RecordingTonePlayer())
    recorder = SessionRecorder(engine)

    levels = [0.0] * 30 + [0.3 * 0.7**k for k in range(15)] + [0.0] * 75
    for i, raw in enumerate(levels):
        engine.tick(raw)
        if i == 100:
            engine.manual_trigger(pitch_hint=330.0)
        recorder.capture()
    return recorder.recording


class TestSessionRecorder:
    """Tests for capturing engine output."""

    def test_captures_frames_events_and_notes(self, recording):
        assert recording.n_frames == 120
        assert recording.duration == pytest.approx(2.0)
        assert len(recording.events) == 2
        assert len(recording.notes) > 0

    def test_event_frame_index(self, recording):
        detected, manual = recording.events
        assert detected.frame_index == 38
        assert manual.frame_index == 100
        assert manual.descriptor.sound_type == "manual"

    def test_capture_frames_disabled(self):
        engine = ReactiveEngine(seed=0)
        recorder = SessionRecorder(engine, capture_frames=False)
        engine.tick(0.0)
        telemetry = recorder.capture()
        assert telemetry.time_ms == 16
        assert recorder.recording.frames == []


    def test_existing_note_listener_still_called(self):
        caller_notes = []
        engine = ReactiveEngine(seed=0, note_listener=caller_notes.append)
        recorder = SessionRecorder(engine)
        for _ in range(240):
            engine.tick(0.0)

        assert len(recorder.recording.notes) > 0
        assert caller_notes == recorder.recording.notes


class TestSessionExporter:
    """Tests for manifest serialization."""

    def test_build_manifest_structure(self, recording):
        manifest = SessionExporter().build_manifest(recording, source="clip.wav", seed=0)
        assert set(manifest) == {"metadata", "events", "notes", "frames"}

    def test_metadata_fields(self, recording):
        meta = SessionExporter().build_manifest(recording, source="clip.wav", seed=0)["metadata"]

        assert meta["fps"] == 60
        assert meta["n_frames"] == 120
        assert meta["n_events"] == 2
        assert meta["n_notes"] == len(recording.notes)
        assert meta["duration"] == pytest.approx(2.0)
        assert meta["source"] == "clip.wav"
        assert meta["seed"] == 0
        assert meta["schema_version"] == "1.0"

    def test_event_fields(self, recording):
        event = SessionExporter().build_manifest(recording)["events"][0]
        for key in (
            "frame_index",
            "time_ms",
            "x",
            "y",
            "dominant_pitch",
            "pitch_range",
            "intensity",
            "spectral_centroid",
            "sound_type",
        ):
            assert key in event
        assert event["intensity"] == pytest.approx(1.0)

    def test_frame_fields(self, recording):
        frames = SessionExporter().build_manifest(recording)["frames"]
        assert len(frames) == 120
        assert frames[0]["frame_index"] == 0
        assert frames[60]["time"] == pytest.approx(1.0)
        for key in ("smooth_level", "peak_hold", "pitch", "detector_state", "tempo", "mode"):
            assert key in frames[0]

    def test_precision(self, recording):
        frames = SessionExporter(precision=2).build_manifest(recording)["frames"]
        for frame in frames:
            assert frame["smooth_level"] == round(frame["smooth_level"], 2)

    def test_export_json(self, recording, tmp_path):
        exporter = SessionExporter()
        manifest = exporter.build_manifest(recording)
        path = exporter.export_json(manifest, tmp_path / "session.json")

        with open(path, encoding="utf-8") as f:
            loaded = json.load(f)
        assert loaded == manifest

    def test_export_numpy(self, recording, tmp_path):
        exporter = SessionExporter()
        manifest = exporter.build_manifest(recording)
        path = exporter.export_numpy(manifest, tmp_path / "session.npz")

        data = np.load(path)
        assert int(data["n_frames"]) == 120
        assert data["smooth_level"].shape == (120,)
        assert data["analyzing"].dtype == bool
        assert data["analyzing"].any()
        assert list(data["event_sound_type"]) == [
            e["sound_type"] for e in manifest["events"]
        ]
        assert len(data["note_frequency"]) == len(manifest["notes"])

    def test_export_numpy_empty_session(self, tmp_path):
        engine = ReactiveEngine(seed=0)
        recorder = SessionRecorder(engine)
        engine.tick(0.0)
        recorder.capture()

        exporter = SessionExporter()
        path = exporter.export_numpy(exporter.build_manifest(recorder.recording), tmp_path / "e.npz")
        data = np.load(path)
        assert len(data["event_frames"]) == 0
