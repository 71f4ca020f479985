"""Render cadence, frame coalescing and timed replay of a stored history."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Iterable, Iterator, Optional, Protocol, Sequence

from ffprog.aggregator import ProgressUpdate, replay_metrics
from ffprog.record_store import StatsRecord

logger = logging.getLogger(__name__)

# Upper bound on redraws per second, live and replay alike.
RENDER_HZ = 10.0
DEFAULT_REPLAY_SPEED = 1.0


@dataclass(frozen=True)
class RenderFrame:
    index: int
    update: ProgressUpdate
    coalesced: int = 0


class FrameCoalescer:
    """Hold the newest pending update and release it at most ``hz`` times a second."""

    def __init__(self, hz: float = RENDER_HZ) -> None:
        if hz <= 0:
            raise ValueError("hz must be positive")
        self.interval = 1.0 / hz
        self._pending: Optional[ProgressUpdate] = None
        self._pending_skipped = 0
        self._last_render: Optional[float] = None
        self._frames = 0
        self.coalesced = 0

    def offer(self, update: ProgressUpdate) -> None:
        if self._pending is not None:
            self._pending_skipped += 1
            self.coalesced += 1
        self._pending = update

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def next_due(self) -> Optional[float]:
        """Earliest time the pending update may be drawn, if any is pending."""
        if self._pending is None:
            return None
        if self._last_render is None:
            return float("-inf")
        return self._last_render + self.interval

    def poll(self, now: float) -> Optional[RenderFrame]:
        due = self.next_due()
        if due is None or now < due:
            return None
        return self._emit(now)

    def flush(self, now: float) -> Optional[RenderFrame]:
        """Release the pending update regardless of cadence (end of stream)."""
        if self._pending is None:
            return None
        return self._emit(now)

    def _emit(self, now: float) -> RenderFrame:
        pending = self._pending
        if pending is None:
            raise RuntimeError("No pending update to render")
        frame = RenderFrame(self._frames, pending, self._pending_skipped)
        self._frames += 1
        self._pending = None
        self._pending_skipped = 0
        self._last_render = now
        return frame


def replay_updates(record: StatsRecord) -> list[ProgressUpdate]:
    return list(replay_metrics(record.source_profile, record.history))


def replay_schedule(
    updates: Sequence[ProgressUpdate], speed: float = DEFAULT_REPLAY_SPEED
) -> list[tuple[float, ProgressUpdate]]:
    """Pair every update with the delay since the previous one, scaled by speed."""
    if speed <= 0:
        raise ValueError("speed must be positive")
    steps: list[tuple[float, ProgressUpdate]] = []
    previous: Optional[float] = None
    for update in updates:
        delay = 0.0 if previous is None else max(0.0, update.wall_elapsed - previous)
        steps.append((delay / speed, update))
        previous = update.wall_elapsed
    return steps


def visual_timeline(
    updates: Iterable[ProgressUpdate], hz: float = RENDER_HZ
) -> Iterator[tuple[float, RenderFrame]]:
    """Yield ``(time, frame)`` for what a renderer polling at ``hz`` would draw.

    Times are on the recorded wall clock. A pending update is drawn at its
    cadence deadline when the next update arrives later than that deadline.
    """
    coalescer = FrameCoalescer(hz)
    last_time = 0.0
    for update in updates:
        due = coalescer.next_due()
        if due is not None and due <= update.wall_elapsed:
            frame = coalescer.poll(due)
            if frame is not None:
                yield due, frame
        coalescer.offer(update)
        last_time = update.wall_elapsed
        frame = coalescer.poll(last_time)
        if frame is not None:
            yield last_time, frame
    due = coalescer.next_due()
    tail_time = max(last_time, due if due is not None else last_time)
    tail = coalescer.flush(tail_time)
    if tail is not None:
        yield tail_time, tail


def visual_sequence(
    updates: Iterable[ProgressUpdate], hz: float = RENDER_HZ
) -> list[RenderFrame]:
    """Frames a renderer polling at ``hz`` would draw for updates at their own times."""
    return [frame for _, frame in visual_timeline(updates, hz)]


class ReplayHost(Protocol):
    def set_timer(self, delay: float, callback: Callable[[], None]) -> Any: ...

    def offer_update(self, update: ProgressUpdate) -> None: ...

    def replay_finished(self) -> None: ...

    def show_message(self, text: str, *, level: str = "info") -> None: ...


class ReplayPlayer:
    """Non-blocking replay of stored updates on the host's timer."""

    def __init__(self, host: ReplayHost, speed: float = DEFAULT_REPLAY_SPEED) -> None:
        if speed <= 0:
            raise ValueError("speed must be positive")
        self._host = host
        self.speed = speed
        self._steps: Optional[Iterator[tuple[float, ProgressUpdate]]] = None
        self._pending: Optional[ProgressUpdate] = None
        self._timer: Any = None
        self.delivered = 0

    def start(self, updates: Sequence[ProgressUpdate]) -> None:
        self.stop()
        self._steps = iter(replay_schedule(updates, self.speed))
        self._advance()

    def stop(self) -> None:
        if self._timer is not None:
            stop = getattr(self._timer, "stop", None)
            if callable(stop):
                stop()
            self._timer = None
        self._steps = None
        self._pending = None

    @property
    def is_running(self) -> bool:
        return self._steps is not None

    def _advance(self) -> None:
        self._timer = None
        while self._steps is not None:
            if self._pending is not None:
                try:
                    self._host.offer_update(self._pending)
                except Exception as exc:
                    logger.exception("Replay update failed")
                    self._host.show_message(f"Replay error: {exc}", level="error")
                    self.stop()
                    return
                self.delivered += 1
                self._pending = None
            try:
                delay, update = next(self._steps)
            except StopIteration:
                self._steps = None
                self._host.replay_finished()
                return
            self._pending = update
            if delay > 0:
                self._timer = self._host.set_timer(max(0.01, delay), self._advance)
                return
