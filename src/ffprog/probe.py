"""Baseline metadata extraction from ffprobe/ffmpeg diagnostic text."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
import subprocess
from typing import Callable, Optional

from ffprog.errors import DurationMissingError, ProbeError, UnparseableProbeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceProfile:
    """Immutable baseline of the input media."""

    duration_seconds: float
    source_bitrate_bps: float = 0.0


def _seconds(match: re.Match[str]) -> float:
    return float(match.group("value"))


def _clock(match: re.Match[str]) -> float:
    hours = int(match.group("h"))
    minutes = int(match.group("m"))
    seconds = float(match.group("s"))
    return hours * 3600 + minutes * 60 + seconds


def _bits(match: re.Match[str]) -> float:
    return float(match.group("value"))


def _kilobits(match: re.Match[str]) -> float:
    return float(match.group("value")) * 1000.0


# (label, value) pairs: the label locates the field, the value must then parse.
_DURATION_ANCHORS: tuple[tuple[re.Pattern[str], re.Pattern[str], Callable], ...] = (
    (
        re.compile(r'"duration"\s*:'),
        re.compile(r'"duration"\s*:\s*"?(?P<value>\d+(?:\.\d+)?)"?'),
        _seconds,
    ),
    (
        re.compile(r"^\s*duration=", re.MULTILINE),
        re.compile(r"^\s*duration=(?P<value>\d+(?:\.\d+)?)\s*$", re.MULTILINE),
        _seconds,
    ),
    (
        re.compile(r"Duration:"),
        re.compile(r"Duration:\s*(?P<h>\d+):(?P<m>\d{2}):(?P<s>\d{2}(?:\.\d+)?)"),
        _clock,
    ),
)

_BITRATE_ANCHORS: tuple[tuple[re.Pattern[str], Callable], ...] = (
    (re.compile(r'"bit_rate"\s*:\s*"?(?P<value>\d+(?:\.\d+)?)"?'), _bits),
    (re.compile(r"^\s*bit_rate=(?P<value>\d+(?:\.\d+)?)\s*$", re.MULTILINE), _bits),
    (re.compile(r"bitrate:\s*(?P<value>\d+(?:\.\d+)?)\s*kb/s"), _kilobits),
)


def _parse_duration(raw: str) -> float:
    for label, pattern, convert in _DURATION_ANCHORS:
        if not label.search(raw):
            continue
        match = pattern.search(raw)
        if match is None:
            raise UnparseableProbeError(
                "Input duration is not a number", details={"label": label.pattern}
            )
        duration = convert(match)
        if duration <= 0:
            raise UnparseableProbeError(
                f"Input duration must be positive, got {duration}"
            )
        return duration
    raise DurationMissingError("No duration found in probe output")


def _parse_bitrate(raw: str) -> float:
    for pattern, convert in _BITRATE_ANCHORS:
        match = pattern.search(raw)
        if match is not None:
            return convert(match)
    logger.info("No source bitrate in probe output; baseline unknown")
    return 0.0


def parse_profile(raw_probe_text: str) -> SourceProfile:
    """Normalize probe text into a SourceProfile or raise a ProbeError."""
    duration = _parse_duration(raw_probe_text)
    bitrate = _parse_bitrate(raw_probe_text)
    logger.info("Probed duration=%.3fs bitrate=%.0fbps", duration, bitrate)
    return SourceProfile(duration_seconds=duration, source_bitrate_bps=bitrate)


def run_probe(input_path: Path, binary: str = "ffprobe") -> str:
    """Run ffprobe on the input and return its stdout."""
    command = [
        binary,
        "-hide_banner",
        "-print_format",
        "json",
        "-show_format",
        "-i",
        str(input_path),
    ]
    logger.debug("Probe command: %s", command)
    try:
        result = subprocess.run(
            command,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise ProbeError(f"Failed to run {binary}: {exc}") from exc
    if result.returncode != 0:
        raise ProbeError(
            result.stderr.strip() or f"{binary} exited with {result.returncode}",
            details={"returncode": result.returncode},
        )
    return result.stdout


def probe_source(
    input_path: Path,
    binary: str = "ffprobe",
    *,
    runner: Optional[Callable[[Path, str], str]] = None,
) -> SourceProfile:
    """Probe the input and return its baseline profile."""
    raw = (runner or run_probe)(input_path, binary)
    return parse_profile(raw)
