"""
Frame clock and deferred-callback scheduler.

Every component reads time from a single FrameClock owned by the engine,
so a session can be replayed deterministically without a wall clock.
Staggered note playback is queued on the Scheduler and drained once per
tick instead of relying on free-running timers.
"""

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable


class FrameClock:
    """
    Fixed-rate tick counter.

    Time is derived from the frame index, so two runs fed the same frames
    see identical timestamps.
    """

    def __init__(self, fps: int = 60):
        self.fps = fps or 60
        self.frame = 0

    @property
    def now_ms(self) -> int:
        """Milliseconds elapsed since frame 0."""
        return int(self.frame * 1000 / self.fps)

    @property
    def frame_ms(self) -> float:
        """Duration of one frame in milliseconds."""
        return 1000.0 / self.fps

    def tick(self) -> int:
        """Advance one frame and return the new timestamp."""
        self.frame += 1
        return self.now_ms

    def reset(self):
        self.frame = 0


@dataclass(order=True)
class ScheduledCall:
    """A callback waiting for its fire time."""

    fire_ms: float
    sequence: int
    callback: Callable[..., Any] = field(compare=False)
    args: tuple = field(default=(), compare=False)
    label: str = field(default="", compare=False)


class Scheduler:
    """
    Priority queue of fire-and-forget callbacks keyed by fire time.

    Calls scheduled for the same instant run in insertion order. There is
    no cancellation: once queued, a call runs on the first drain at or after
    its fire time, and must cope with whatever state the engine is in then.
    """

    def __init__(self):
        self._queue: list[ScheduledCall] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._queue)

    def schedule(
        self,
        fire_ms: float,
        callback: Callable[..., Any],
        *args: Any,
        label: str = "",
    ) -> ScheduledCall:
        """Queue callback(*args) to run at fire_ms."""
        call = ScheduledCall(
            fire_ms=fire_ms,
            sequence=next(self._counter),
            callback=callback,
            args=args,
            label=label,
        )
        heapq.heappush(self._queue, call)
        return call

    def next_fire_ms(self) -> float | None:
        """Fire time of the earliest pending call, or None when empty."""
        return self._queue[0].fire_ms if self._queue else None

    def drain(self, now_ms: float) -> int:
        """
        Run every call whose fire time has been reached.

        Calls queued by a running callback are picked up in the same drain
        if they are already due.

        Returns:
            Number of callbacks executed.
        """
        executed = 0
        while self._queue and self._queue[0].fire_ms <= now_ms:
            call = heapq.heappop(self._queue)
            call.callback(*call.args)
            executed += 1
        return executed

    def clear(self):
        self._queue.clear()
