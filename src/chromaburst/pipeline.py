"""
Offline replay pipeline.

Drives a fresh, seeded ReactiveEngine with the frames of an audio file
and exports what it did. The same file, config and seed always produce
the same manifest, so results are cached by content hash.
"""

import hashlib
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Union

from chromaburst.core.pitch import YinPitchModel, select_pitch_source
from chromaburst.engine import EngineConfig, ReactiveEngine
from chromaburst.io.exporter import SessionExporter
from chromaburst.io.sources import (
    DEFAULT_SAMPLE_RATE,
    ArrayFrameSource,
    RecordingTonePlayer,
    SpectrumAnalyzer,
    load_audio,
)
from chromaburst.session import SessionRecorder

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ReplayPipeline:
    """
    Audio file to session manifest.

    Combines loading, framing, engine replay and export into a single
    unified interface.
    """

    # Increment whenever engine behaviour changes so cached sessions
    # are invalidated and re-generated.
    REPLAY_VERSION = "1.0"

    def __init__(
        self,
        config: EngineConfig | None = None,
        seed: int = 0,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        max_duration: float | None = None,
        use_yin: bool = False,
        preset: str | None = None,
        n_bins: int = 64,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Engine configuration.
            seed: Seed for the replay engine.
            sample_rate: Analysis sample rate.
            max_duration: Only replay the first max_duration seconds.
            use_yin: Use the YIN pitch model instead of FFT estimation.
            preset: Preset name recorded in the manifest metadata.
            n_bins: Spectrum resolution handed to the engine.
        """
        self.config = config or EngineConfig()
        self.seed = seed
        self.sample_rate = sample_rate
        self.max_duration = max_duration
        self.use_yin = use_yin
        self.preset = preset
        self.n_bins = n_bins
        self.exporter = SessionExporter()

    def _get_cache_dir(self) -> Path:
        """Return the directory for caching session manifests."""
        cache_dir = Path.home() / ".cache" / "chromaburst" / "sessions"
        cache_dir.mkdir(parents=True, exist_ok=True)
        return cache_dir

    def _calculate_file_hash(self, file_path: Path) -> str:
        """Calculate SHA256 hash of the file."""
        sha256_hash = hashlib.sha256()
        with open(file_path, "rb") as f:
            for byte_block in iter(lambda: f.read(4096), b""):
                sha256_hash.update(byte_block)
        return sha256_hash.hexdigest()

    def _get_config_hash(self) -> str:
        """Calculate hash of everything that influences the replay."""
        config = {
            "version": self.REPLAY_VERSION,
            "sr": self.sample_rate,
            "seed": self.seed,
            "max_duration": self.max_duration,
            "yin": self.use_yin,
            "n_bins": self.n_bins,
            "engine": self.config.to_dict(),
        }
        return hashlib.md5(json.dumps(config, sort_keys=True).encode("utf-8")).hexdigest()

    def _get_cache_path(self, audio_path: Path) -> Path:
        file_hash = self._calculate_file_hash(audio_path)
        config_hash = self._get_config_hash()
        return self._get_cache_dir() / f"session_{file_hash}_{config_hash}.json"

    def clear_cache(self):
        """Clear the session cache."""
        cache_dir = self._get_cache_dir()
        if cache_dir.exists():
            shutil.rmtree(cache_dir)
            cache_dir.mkdir(parents=True, exist_ok=True)

    def build_engine(self, source: ArrayFrameSource) -> ReactiveEngine:
        """Fresh engine wired to the source for this replay."""
        model = None
        if self.use_yin:
            model = YinPitchModel(source.get_latest_samples, sample_rate=source.sr)
        return ReactiveEngine(
            self.config,
            player=RecordingTonePlayer(),
            pitch_source=select_pitch_source(model, self.config.pitch),
            seed=self.seed,
        )

    def load(self, audio_path: Union[str, Path]) -> ArrayFrameSource:
        """Load audio and frame it at the engine rate."""
        y, sr = load_audio(audio_path, sr=self.sample_rate)
        if self.max_duration is not None:
            y = y[: int(self.max_duration * sr)]

        return ArrayFrameSource(
            y, sr=sr, fps=self.config.fps, analyzer=SpectrumAnalyzer(self.n_bins)
        )

    def replay(
        self,
        source: ArrayFrameSource,
        progress: ProgressCallback | None = None,
    ) -> SessionRecorder:
        """
        Run every frame of a source through a fresh engine.

        Args:
            source: Framed audio.
            progress: Optional callback(frame_index, n_frames).

        Returns:
            The recorder holding the session.
        """
        engine = self.build_engine(source)
        recorder = SessionRecorder(engine)
        n_frames = source.n_frames

        for frame in source:
            engine.tick(frame.level, frame.spectrum)
            recorder.capture()
            if progress is not None:
                progress(frame.index + 1, n_frames)

        logger.debug(
            "Replayed %d frames: %d events, %d notes",
            n_frames,
            len(recorder.recording.events),
            len(recorder.recording.notes),
        )
        return recorder

    def export(
        self,
        manifest: dict[str, Any],
        output_path: Union[str, Path],
        format: str = "json",
    ) -> Path:
        """Write a manifest as "json" or "numpy"."""
        if format == "numpy":
            return self.exporter.export_numpy(manifest, output_path)
        return self.exporter.export_json(manifest, output_path)

    def _result(self, manifest: dict[str, Any]) -> dict[str, Any]:
        metadata = manifest.get("metadata", {})
        return {
            "manifest": manifest,
            "n_events": metadata.get("n_events", 0),
            "n_notes": metadata.get("n_notes", 0),
            "duration": metadata.get("duration", 0.0),
            "n_frames": metadata.get("n_frames", 0),
            "fps": self.config.fps,
        }

    def process(
        self,
        audio_path: Union[str, Path],
        output_path: Union[str, Path] | None = None,
        format: str = "json",
        use_cache: bool = True,
        progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Run the complete pipeline from audio file to session manifest.

        Args:
            audio_path: Path to input audio file.
            output_path: Path for output manifest. If None, only returns dict.
            format: Output format ("json" or "numpy").
            use_cache: Whether to use a cached manifest if available.
            progress: Optional callback(frame_index, n_frames).

        Returns:
            Dictionary containing the manifest and replay summary.
        """
        audio_path = Path(audio_path)

        manifest = None
        if use_cache:
            try:
                cache_path = self._get_cache_path(audio_path)
                if cache_path.exists():
                    with open(cache_path, "r", encoding="utf-8") as f:
                        manifest = json.load(f)
                    if not isinstance(manifest, dict) or "metadata" not in manifest:
                        raise ValueError(f"not a session manifest: {cache_path}")
                    logger.info("Loaded session from cache: %s", cache_path)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load cache: %s. Re-analyzing.", e)
                manifest = None

        if manifest is None:
            source = self.load(audio_path)
            recorder = self.replay(source, progress)
            manifest = self.exporter.to_dict(
                recorder.recording,
                source=audio_path.name,
                seed=self.seed,
                preset=self.preset,
            )

            if use_cache:
                try:
                    cache_path = self._get_cache_path(audio_path)
                    with open(cache_path, "w", encoding="utf-8") as f:
                        json.dump(manifest, f)
                except OSError as e:
                    logger.warning("Failed to save cache: %s", e)

        result = self._result(manifest)
        if output_path:
            written_path = self.export(manifest, output_path, format)
            result["output_path"] = str(written_path)
        return result

    def process_to_manifest(self, audio_path: Union[str, Path]) -> dict[str, Any]:
        """Process audio and return the manifest dictionary directly."""
        return self.process(audio_path)["manifest"]
