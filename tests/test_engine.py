"""Tests for the top-level ReactiveEngine and its configuration."""

import json

import numpy as np
import pytest

from chromaburst.engine import (
    PRESETS,
    EngineConfig,
    ReactiveEngine,
    load_engine_config,
    make_config,
)
from chromaburst.io.sources import RecordingTonePlayer


def burst_levels(n_quiet=30, peak=0.3, decay=0.7, n_decay=15, n_tail=60):
    """Raw amplitude trace: silence, one spike with exponential decay, silence."""
    spike = [peak * decay**k for k in range(n_decay)]
    return [0.0] * n_quiet + spike + [0.0] * n_tail


def run(engine, levels, spectrum=None):
    events = []
    for raw in levels:
        descriptor = engine.tick(raw, spectrum)
        if descriptor is not None:
            events.append(descriptor)
    return events


class TestReactiveEngine:
    """Tests for the per-tick orchestration."""

    def test_burst_launches_one_firework(self):
        engine = ReactiveEngine(seed=0)
        events = run(engine, burst_levels())

        assert len(events) == 1
        assert events[0].intensity == pytest.approx(1.0)
        assert engine.firework_engine.total_launched == 1
        assert len(engine.music.history) == 1

    def test_event_position_in_stage_center(self):
        engine = ReactiveEngine(seed=0)
        positions = []
        engine.event_listeners.append(lambda d, pos: positions.append(pos))
        run(engine, burst_levels())

        (x, y), = positions
        assert 0.2 * 1400 <= x <= 0.8 * 1400
        assert 0.3 * 800 <= y <= 0.7 * 800

    def test_clock_drives_timestamps(self):
        engine = ReactiveEngine(seed=0)
        run(engine, [0.0] * 60)
        assert engine.now_ms == 1000
        assert engine.telemetry().time_ms == 1000

    def test_silence_is_uneventful(self):
        engine = ReactiveEngine(seed=0)
        assert run(engine, [0.0] * 300) == []
        assert engine.fireworks == []

    def test_mic_disabled_ignores_input(self):
        engine = ReactiveEngine(seed=0)
        engine.set_mic_enabled(False)
        assert run(engine, burst_levels()) == []
        assert engine.level_processor.state.raw_level == 0.0

    def test_mic_toggle(self):
        engine = ReactiveEngine(seed=0)
        engine.toggle_mic()
        assert not engine.mic_enabled
        engine.toggle_mic()
        assert engine.mic_enabled

    def test_fireworks_and_music_run_with_mic_off(self):
        engine = ReactiveEngine(seed=0, player=RecordingTonePlayer())
        engine.manual_trigger()
        engine.set_mic_enabled(False)
        run(engine, [0.0] * 120)

        assert engine.firework_engine.total_exploded == 1
        assert engine.music.notes_played > 0

    def test_manual_trigger(self):
        engine = ReactiveEngine(seed=0)
        descriptor = engine.manual_trigger(position=(100.0, 50.0), pitch_hint=520.0)

        assert descriptor.sound_type == "manual"
        assert descriptor.dominant_pitch == 520.0
        assert descriptor.pitch_range == "high"
        fw = engine.fireworks[0]
        assert (fw.x, fw.y) == (100.0, 50.0)

    def test_manual_trigger_random_pitch_and_position(self):
        engine = ReactiveEngine(seed=0)
        descriptor = engine.manual_trigger()
        fw = engine.fireworks[0]

        assert 200.0 <= descriptor.dominant_pitch <= 800.0
        assert 0 <= fw.x <= 1400
        assert 0 <= fw.y <= 400

    def test_pitch_from_spectrum(self, harmonic_spectrum):
        engine = ReactiveEngine(seed=0)
        for _ in range(120):
            engine.tick(0.0, harmonic_spectrum)
        assert engine.pitch == pytest.approx(220.0, abs=0.5)
        assert engine.telemetry().note == "A3"

    def test_same_seed_same_session(self):
        def session(seed):
            notes = []
            engine = ReactiveEngine(seed=seed, note_listener=notes.append)
            run(engine, burst_levels() * 3)
            return [(f.x, f.y) for f in engine.fireworks], notes

        assert session(5) == session(5)

    def test_controls(self):
        engine = ReactiveEngine(seed=0)

        engine.adjust_sensitivity(0.5)
        assert engine.sensitivity == pytest.approx(3.5)

        engine.toggle_music()
        assert not engine.music.enabled
        engine.set_music_enabled(True)
        assert engine.music.enabled

        engine.adjust_frequency_threshold(-10)
        assert engine.music.frequency_threshold == 80.0
        engine.adjust_energy_threshold(0.02)
        assert engine.music.energy_threshold == pytest.approx(0.14)

        engine.reset_calibration()
        assert engine.level_processor.state.max_recorded_level == 0.0
        assert engine.sensitivity == pytest.approx(3.5)

        engine.music.state.mode = "minor"
        engine.reset_music_patterns()
        assert engine.music.state.mode == "major"

    def test_scheduler_shared_with_music(self):
        """Calls queued on the engine scheduler fire as the clock passes them."""
        engine = ReactiveEngine(seed=0)
        assert engine.scheduler is engine.music.scheduler

        fired = []
        engine.scheduler.schedule(50, fired.append, "cue")
        run(engine, [0.0] * 10)
        assert fired == ["cue"]

    def test_telemetry_snapshot(self):
        engine = ReactiveEngine(seed=0)
        run(engine, burst_levels(n_tail=0, n_decay=2))
        t = engine.telemetry()

        assert t.detector_state == "analyzing"
        assert t.buffer_fill == 15
        assert 0.0 <= t.smooth_level <= 1.0
        assert t.mode == "major"
        assert t.music_enabled and t.mic_enabled

        with pytest.raises(AttributeError):
            t.level = 0.5


class TestEngineConfig:
    """Tests for config construction, presets and files."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.fps == 60
        assert config.level.sensitivity == 3.0
        assert config.detector.cooldown_ms == 300.0
        assert config.classifier.thresholds.low == 150.0
        assert config.music.frequency_threshold == 90.0

    def test_round_trip(self):
        config = EngineConfig()
        config.detector.peak_threshold = 0.4
        data = json.loads(json.dumps(config.to_dict()))
        assert EngineConfig.from_dict(data) == config

    def test_partial_override(self):
        config = EngineConfig.from_dict({"level": {"sensitivity": 5.0}, "fps": 30})
        assert config.level.sensitivity == 5.0
        assert config.level.peak_decay == 0.95
        assert config.fps == 30

    def test_nested_sections(self):
        config = EngineConfig.from_dict(
            {
                "level": {"calibration": {"ceiling": 10.0}},
                "classifier": {"rules": {"voice_min_frames": 3}},
                "fireworks": {"target_dx": [-10, 10]},
            }
        )
        assert config.level.calibration.ceiling == 10.0
        assert config.classifier.rules.voice_min_frames == 3
        assert config.fireworks.target_dx == (-10, 10)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"level": {"loudness": 1.0}})
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"lasers": {}})

    def test_presets(self):
        assert set(PRESETS) == {"classic", "spectral"}
        assert not make_config("classic").classifier.classify_sound_type

        spectral = make_config("spectral")
        assert spectral.classifier.classify_sound_type
        assert spectral.classifier.thresholds.low == 100.0
        assert spectral.classifier.thresholds.high == 500.0

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            make_config("disco")

    def test_overrides_layer_on_preset(self):
        config = make_config("spectral", {"classifier": {"thresholds": {"low": 120.0}}})
        assert config.classifier.thresholds.low == 120.0
        assert config.classifier.thresholds.high == 500.0

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"detector": {"cooldown_ms": 500}}))

        config = load_engine_config(path, preset="classic")
        assert config.detector.cooldown_ms == 500
        assert not config.classifier.classify_sound_type

    def test_preset_changes_engine_behaviour(self):
        engine = ReactiveEngine(make_config("classic"), seed=0)
        events = run(engine, burst_levels())
        assert events[0].sound_type == "unknown"
