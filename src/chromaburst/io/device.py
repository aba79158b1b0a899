"""
Live audio devices via sounddevice.

MicrophoneStream captures blocks on the PortAudio thread and hands them
to the tick loop through a bounded queue; SineTonePlayer mixes enveloped
sine voices on the output thread. Only the live CLI imports this module.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Iterator

import numpy as np
import sounddevice as sd

from chromaburst.io.sources import (
    DEFAULT_SAMPLE_RATE,
    AudioFrame,
    SpectrumAnalyzer,
    block_level,
)

logger = logging.getLogger(__name__)


def list_input_devices() -> list[tuple[int, str]]:
    """(index, name) of every device with input channels."""
    return [
        (i, dev["name"])
        for i, dev in enumerate(sd.query_devices())
        if dev["max_input_channels"] > 0
    ]


class MicrophoneStream:
    """
    Mono input stream delivering one AudioFrame per engine tick.

    When the queue is full the oldest block is discarded to make room, so
    the tick loop never falls more than queue_size blocks behind the input.
    """

    def __init__(
        self,
        device: int | str | None = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        fps: int = 60,
        analyzer: SpectrumAnalyzer | None = None,
        history: int = 2048,
        queue_size: int = 64,
    ):
        self.sample_rate = sample_rate
        self.fps = fps or 60
        self.block_size = int(sample_rate / self.fps)
        self.analyzer = analyzer or SpectrumAnalyzer()
        self.history = np.zeros(max(history, self.analyzer.fft_size), dtype=np.float32)
        self.q: queue.Queue = queue.Queue(maxsize=queue_size)
        self.dropped_blocks = 0
        self._index = 0

        self._stream = sd.InputStream(
            device=device,
            channels=1,
            samplerate=sample_rate,
            blocksize=self.block_size,
            dtype="float32",
            callback=self._callback,
        )

    def _callback(self, indata, frames, time, status):
        if status:
            logger.warning("Input stream status: %s", status)
        block = indata[:, 0].copy()
        try:
            self.q.put_nowait(block)
        except queue.Full:
            try:
                self.q.get_nowait()
            except queue.Empty:
                pass
            self.dropped_blocks += 1
            self.q.put_nowait(block)

    def start(self):
        self._stream.start()

    def stop(self):
        self._stream.stop()
        self._stream.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def read(self, timeout: float = 1.0) -> AudioFrame:
        """
        Wait for the next block and turn it into a frame.

        Raises:
            queue.Empty: If no block arrived within timeout.
        """
        block = self.q.get(timeout=timeout)
        self.history = np.concatenate([self.history[len(block):], block])

        frame = AudioFrame(
            index=self._index,
            time=self._index / self.fps,
            level=float(np.clip(block_level(block), 0.0, 1.0)),
            spectrum=self.analyzer.analyze(self.history),
            samples=self.history,
        )
        self._index += 1
        return frame

    def frames(self, timeout: float = 1.0) -> Iterator[AudioFrame]:
        while True:
            yield self.read(timeout)

    def get_latest_samples(self) -> np.ndarray:
        return self.history


@dataclass
class _Voice:
    frequency: float
    amplitude: float
    start: int
    length: int
    phase: float = 0.0


class SineTonePlayer:
    """
    Polyphonic sine synthesizer on a sounddevice OutputStream.

    Each note gets a linear attack and a release over its final 30%.
    """

    def __init__(
        self,
        device: int | str | None = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        master_gain: float = 0.5,
        attack: float = 0.01,
        max_voices: int = 32,
    ):
        self.sample_rate = sample_rate
        self.master_gain = master_gain
        self.attack = attack
        self.max_voices = max_voices

        self._voices: list[_Voice] = []
        self._lock = threading.Lock()
        self._sample_clock = 0

        self._stream = sd.OutputStream(
            device=device,
            channels=1,
            samplerate=sample_rate,
            dtype="float32",
            callback=self._callback,
        )

    def play(self, frequency: float, velocity: float, start_offset: float, duration: float):
        if frequency <= 0 or duration <= 0:
            return
        with self._lock:
            voice = _Voice(
                frequency=float(frequency),
                amplitude=float(np.clip(velocity, 0.0, 1.0)),
                start=self._sample_clock + int(start_offset * self.sample_rate),
                length=max(int(duration * self.sample_rate), 1),
            )
            self._voices.append(voice)
            if len(self._voices) > self.max_voices:
                self._voices.pop(0)

    def _envelope(self, voice: _Voice, t: np.ndarray) -> np.ndarray:
        attack = max(int(self.attack * self.sample_rate), 1)
        release_start = int(voice.length * 0.7)
        env = np.ones_like(t, dtype=np.float32)
        env = np.minimum(env, t / attack)
        release = 1.0 - (t - release_start) / max(voice.length - release_start, 1)
        env = np.where(t >= release_start, np.minimum(env, release), env)
        return np.clip(env, 0.0, 1.0)

    def _callback(self, outdata, frames, time, status):
        if status:
            logger.warning("Output stream status: %s", status)

        mix = np.zeros(frames, dtype=np.float32)
        with self._lock:
            clock = self._sample_clock
            alive = []
            for voice in self._voices:
                t = np.arange(clock, clock + frames) - voice.start
                active = (t >= 0) & (t < voice.length)
                if active.any():
                    phase = voice.phase + 2 * np.pi * voice.frequency * np.arange(frames) / self.sample_rate
                    wave = np.sin(phase) * self._envelope(voice, t) * voice.amplitude
                    mix += np.where(active, wave, 0.0).astype(np.float32)
                    voice.phase = float(phase[-1] + 2 * np.pi * voice.frequency / self.sample_rate)
                if clock + frames < voice.start + voice.length:
                    alive.append(voice)
            self._voices = alive
            self._sample_clock = clock + frames

        outdata[:, 0] = np.clip(mix * self.master_gain, -1.0, 1.0)

    def start(self):
        self._stream.start()

    def stop(self):
        self._stream.stop()
        self._stream.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
