"""Incremental parser for the ffmpeg ``-progress`` key=value stream.

ffmpeg writes one block of ``key=value`` lines per reporting interval and
terminates each block with ``progress=continue`` (or ``progress=end`` for the
last one). Chunks arrive at arbitrary byte boundaries, so the parser keeps the
trailing partial line between calls.

The transition is pure: ``advance(state, chunk, now)`` returns a new state and
the samples completed by that chunk. ``ProgressParser`` wraps it for callers
that just want to feed bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import math
from typing import Callable, Iterator, Optional, Union

from typing_extensions import TypeAlias

logger = logging.getLogger(__name__)

FieldValue: TypeAlias = Union[int, float, None]

_TERMINATOR = "progress"
_UNUSED_KEYS = frozenset({"out_time", "out_time_ms"})


@dataclass(frozen=True)
class ProgressSample:
    """One parsed progress block."""

    sequence_index: int
    wall_elapsed: float
    output_time_seconds: float
    frame_count: Optional[int] = None
    fps: Optional[float] = None
    encoded_bitrate_bps: Optional[float] = None
    total_size_bytes: Optional[int] = None
    speed_multiplier: Optional[float] = None
    dup_frames: Optional[int] = None
    drop_frames: Optional[int] = None


@dataclass(frozen=True)
class ParserState:
    """Buffer-plus-cursor parser state; never mutated in place."""

    buffer: bytes = b""
    fields: tuple[tuple[str, str], ...] = ()
    next_index: int = 0
    ended: bool = False
    skipped_blocks: int = 0
    bad_fields: int = 0


def _is_missing(value: str) -> bool:
    return not value or value.upper() == "N/A"


def _parse_int(value: str) -> int:
    return int(value)


def _parse_float(value: str) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite value {value!r}")
    return number


def _parse_bitrate(value: str) -> float:
    if value.endswith("kbits/s"):
        value = value[: -len("kbits/s")]
    return _parse_float(value) * 1000.0


def _parse_speed(value: str) -> float:
    if value.endswith("x"):
        value = value[:-1]
    return _parse_float(value)


_FIELD_PARSERS: dict[str, tuple[str, Callable[[str], FieldValue]]] = {
    "frame": ("frame_count", _parse_int),
    "fps": ("fps", _parse_float),
    "bitrate": ("encoded_bitrate_bps", _parse_bitrate),
    "total_size": ("total_size_bytes", _parse_int),
    "speed": ("speed_multiplier", _parse_speed),
    "dup_frames": ("dup_frames", _parse_int),
    "drop_frames": ("drop_frames", _parse_int),
}


def _build_sample(
    fields: tuple[tuple[str, str], ...], index: int, now: float
) -> tuple[Optional[ProgressSample], int]:
    """Return the sample for a finished block and the count of bad fields."""
    values: dict[str, FieldValue] = {}
    bad = 0
    out_time_us: Optional[int] = None
    for key, raw in fields:
        if key == "out_time_us":
            if _is_missing(raw):
                out_time_us = None
                continue
            try:
                out_time_us = int(raw)
            except ValueError:
                bad += 1
                out_time_us = None
            continue
        entry = _FIELD_PARSERS.get(key)
        if entry is None:
            continue
        attr, convert = entry
        if _is_missing(raw):
            values[attr] = None
            continue
        try:
            values[attr] = convert(raw)
        except ValueError:
            bad += 1
            values[attr] = None
            logger.debug("Bad progress value %s=%r", key, raw)
    if out_time_us is None:
        return None, bad
    sample = ProgressSample(
        sequence_index=index,
        wall_elapsed=now,
        output_time_seconds=out_time_us / 1_000_000,
        **values,  # type: ignore[arg-type]
    )
    return sample, bad


def _consume_line(
    state: ParserState, line: bytes, now: float, samples: list[ProgressSample]
) -> ParserState:
    text = line.decode("utf-8", errors="replace").strip()
    key, sep, value = text.partition("=")
    if not sep:
        return state
    key = key.strip()
    value = value.strip()
    if key != _TERMINATOR:
        if key in _FIELD_PARSERS or key == "out_time_us":
            return replace(state, fields=state.fields + ((key, value),))
        if key not in _UNUSED_KEYS:
            logger.debug("Ignoring progress key %s", key)
        return state
    sample, bad = _build_sample(state.fields, state.next_index, now)
    ended = state.ended or value == "end"
    if sample is None:
        logger.debug("Dropped progress block without usable out_time_us")
        return replace(
            state,
            fields=(),
            ended=ended,
            skipped_blocks=state.skipped_blocks + 1,
            bad_fields=state.bad_fields + bad,
        )
    samples.append(sample)
    return replace(
        state,
        fields=(),
        next_index=state.next_index + 1,
        ended=ended,
        bad_fields=state.bad_fields + bad,
    )


def advance(
    state: ParserState, chunk: bytes, now: float
) -> tuple[ParserState, list[ProgressSample]]:
    """Consume a chunk and return the new state plus completed samples."""
    samples: list[ProgressSample] = []
    data = state.buffer + chunk
    cursor = 0
    while True:
        newline = data.find(b"\n", cursor)
        if newline < 0:
            break
        state = _consume_line(state, data[cursor:newline], now, samples)
        cursor = newline + 1
    return replace(state, buffer=data[cursor:]), samples


def finish(
    state: ParserState, now: float
) -> tuple[ParserState, list[ProgressSample]]:
    """Flush an unterminated final line at end of stream."""
    if not state.buffer:
        return state, []
    samples: list[ProgressSample] = []
    state = _consume_line(replace(state, buffer=b""), state.buffer, now, samples)
    return state, samples


class ProgressParser:
    """Stateful convenience wrapper; one instance per stream."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self.state = ParserState()
        self._closed = False

    def feed(self, chunk: bytes) -> Iterator[ProgressSample]:
        """Consume a chunk; the state advances before anything is yielded."""
        if self._closed:
            raise RuntimeError("ProgressParser is closed; create a new instance")
        self.state, samples = advance(self.state, chunk, self._clock())
        return iter(samples)

    def close(self) -> Iterator[ProgressSample]:
        if self._closed:
            return iter(())
        self._closed = True
        self.state, samples = finish(self.state, self._clock())
        return iter(samples)

    @property
    def ended(self) -> bool:
        return self.state.ended
