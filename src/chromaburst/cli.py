"""
Command-line interface for chromaburst.

Usage:
    chromaburst replay <audio_file> [options]
    chromaburst live [options]
"""

import argparse
import json
import logging
import queue
import sys
import time
from pathlib import Path

from chromaburst.engine import PRESETS, EngineConfig, ReactiveEngine, load_engine_config, make_config
from chromaburst.pipeline import ReplayPipeline

logger = logging.getLogger("chromaburst")


def _progress_bar(current: int, total: int, width: int = 35):
    """Print a progress bar to stdout."""
    pct = current / max(total, 1) * 100
    filled = int(width * current / max(total, 1))
    bar = "#" * filled + "-" * (width - filled)
    if sys.stdout.isatty():
        sys.stdout.write(f"\r[{bar}] {pct:5.1f}%  frame {current}/{total}")
        sys.stdout.flush()
        if current >= total:
            sys.stdout.write("\n")
    else:
        if current % max(1, total // 20) == 0 or current >= total:
            print(f"{pct:5.1f}%  frame {current}/{total}", flush=True)


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _add_engine_args(parser: argparse.ArgumentParser):
    """Options shared by replay and live."""
    parser.add_argument(
        "-p", "--preset", type=str, default=None,
        choices=sorted(PRESETS),
        help="Detector/classifier tuning preset",
    )
    parser.add_argument(
        "-c", "--config", type=Path, default=None,
        help="JSON engine config, layered over the preset",
    )
    parser.add_argument(
        "--sensitivity", type=float, default=None,
        help="Input gain multiplier (default: 3.0)",
    )
    parser.add_argument(
        "--auto-calibrate", action="store_true",
        help="Adapt sensitivity and dynamic range to the room",
    )
    parser.add_argument(
        "--no-music", action="store_true",
        help="Disable the reactive music voices",
    )
    parser.add_argument(
        "--yin", action="store_true",
        help="Use librosa YIN pitch tracking instead of FFT estimation",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Debug logging",
    )


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Resolve preset, config file and flag overrides into one config."""
    if args.config is not None:
        config = load_engine_config(args.config, args.preset)
    else:
        config = make_config(args.preset)

    if args.sensitivity is not None:
        config.level.sensitivity = args.sensitivity
    if args.auto_calibrate:
        config.level.auto_calibrate = True
    if args.no_music:
        config.music.enabled = False
    return config


def cmd_replay(args: argparse.Namespace) -> int:
    if not args.audio.exists():
        print(f"Error: Input file not found: {args.audio}", file=sys.stderr)
        return 1

    output_path = args.output
    if output_path is None:
        suffix = ".npz" if args.format == "numpy" else ".json"
        output_path = args.audio.with_name(f"{args.audio.stem}_session{suffix}")

    pipeline = ReplayPipeline(
        config=build_config(args),
        seed=args.seed,
        max_duration=args.max_duration,
        use_yin=args.yin,
        preset=args.preset,
    )

    if args.clear_cache:
        pipeline.clear_cache()
        print("Session cache cleared.")

    if not args.quiet:
        print(f"Replaying: {args.audio}")
        print(f"Preset: {args.preset or 'default'}  Seed: {args.seed}")

    t0 = time.time()
    result = pipeline.process(
        args.audio,
        output_path=output_path,
        format=args.format,
        use_cache=not args.no_cache,
        progress=None if args.quiet else _progress_bar,
    )

    if not args.quiet:
        print(f"Duration: {result['duration']:.2f}s ({result['n_frames']} frames)")
        print(f"Events: {result['n_events']}")
        print(f"Notes: {result['n_notes']}")
        print(f"Output: {result['output_path']}")
        print(f"Done in {time.time() - t0:.1f}s")

    if args.summary:
        manifest = result["manifest"]
        print("\n--- Session Summary ---")
        print(json.dumps(manifest["metadata"], indent=2))
        for event in manifest["events"][:10]:
            print(
                f"  {event['time_ms']:>7}ms  {event['sound_type']:<10} "
                f"{event['pitch_range']:<8} {event['dominant_pitch']:7.1f}Hz  "
                f"intensity {event['intensity']:.2f}"
            )

    return 0


def _status_line(engine: ReactiveEngine) -> str:
    t = engine.telemetry()
    meter = "#" * int(t.smooth_level * 20)
    return (
        f"[{meter:<20}] {t.note:>4} {t.pitch:6.1f}Hz  sens {t.sensitivity:4.1f}x  "
        f"{t.mode:<10} {t.tempo:5.1f}bpm  fireworks {t.n_fireworks:2d}"
    )


def cmd_live(args: argparse.Namespace) -> int:
    from chromaburst.core.pitch import YinPitchModel, select_pitch_source
    from chromaburst.io.device import MicrophoneStream, SineTonePlayer, list_input_devices
    from chromaburst.session import SessionRecorder

    if args.list_devices:
        for index, name in list_input_devices():
            print(f"[{index}] {name}")
        return 0

    config = build_config(args)
    mic = MicrophoneStream(device=args.device, fps=config.fps)
    player = SineTonePlayer()

    model = YinPitchModel(mic.get_latest_samples, sample_rate=mic.sample_rate) if args.yin else None
    engine = ReactiveEngine(
        config,
        player=player,
        pitch_source=select_pitch_source(model, config.pitch),
        seed=args.seed,
    )
    engine.event_listeners.append(
        lambda d, pos: print(
            f"\n* {d.sound_type} {d.pitch_range} {d.dominant_pitch:.0f}Hz "
            f"intensity {d.intensity:.2f}"
        )
    )
    recorder = SessionRecorder(engine, capture_frames=args.output is not None)

    print("Listening... press Ctrl+C to stop.")
    max_frames = int(args.duration * config.fps) if args.duration else None
    try:
        with mic, player:
            for frame in mic.frames():
                engine.tick(frame.level, frame.spectrum)
                recorder.capture()
                if frame.index % max(config.fps // 4, 1) == 0:
                    sys.stdout.write("\r" + _status_line(engine))
                    sys.stdout.flush()
                if max_frames is not None and frame.index + 1 >= max_frames:
                    break
    except KeyboardInterrupt:
        pass
    except queue.Empty:
        print("\nError: No audio from input device", file=sys.stderr)
        return 1

    recording = recorder.recording
    print(f"\nEvents: {len(recording.events)}  Notes: {len(recording.notes)}")
    if mic.dropped_blocks:
        logger.warning("Dropped %d input blocks", mic.dropped_blocks)

    if args.output is not None:
        from chromaburst.io.exporter import SessionExporter

        exporter = SessionExporter()
        manifest = exporter.to_dict(recording, source="live", seed=args.seed, preset=args.preset)
        exporter.export_json(manifest, args.output)
        print(f"Output: {args.output}")

    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="chromaburst",
        description="Sound-reactive fireworks and generative music",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay = subparsers.add_parser("replay", help="Replay an audio file through the engine")
    replay.add_argument(
        "audio",
        type=Path,
        help="Input audio file (wav, mp3, flac)",
    )
    replay.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output session path (default: <audio>_session.json)",
    )
    replay.add_argument(
        "--format",
        choices=["json", "numpy"],
        default="json",
        help="Output format (default: json)",
    )
    replay.add_argument("--seed", type=int, default=0, help="Engine seed (default: 0)")
    replay.add_argument(
        "--max-duration", type=float, default=None,
        help="Only replay the first N seconds",
    )
    replay.add_argument("--no-cache", action="store_true", help="Ignore cached sessions")
    replay.add_argument("--clear-cache", action="store_true", help="Delete cached sessions first")
    replay.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    replay.add_argument("--summary", action="store_true", help="Print session summary to stdout")
    _add_engine_args(replay)
    replay.set_defaults(func=cmd_replay)

    live = subparsers.add_parser("live", help="React to the microphone in real time")
    live.add_argument("-d", "--device", type=int, default=None, help="Input device index")
    live.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    live.add_argument(
        "--duration", type=float, default=None,
        help="Stop after N seconds (default: run until Ctrl+C)",
    )
    live.add_argument("--seed", type=int, default=None, help="Engine seed")
    live.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Write the session manifest here on exit",
    )
    _add_engine_args(live)
    live.set_defaults(func=cmd_live)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return args.func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
