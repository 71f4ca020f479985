"""Versioned persistence of a run's source profile and sample history."""

from __future__ import annotations

from dataclasses import dataclass, fields
import gzip
import json
import logging
import math
import os
from pathlib import Path
from typing import Any
import zlib

from ffprog.errors import RecordIOError, RecordParseError, UnsupportedVersionError
from ffprog.probe import SourceProfile
from ffprog.progress import ProgressSample

logger = logging.getLogger(__name__)

FORMAT_TAG = "ffprog-stats"
FORMAT_VERSION = 1
STATS_SUFFIX = ".stats"

_INT_FIELDS = frozenset(
    {"sequence_index", "frame_count", "total_size_bytes", "dup_frames", "drop_frames"}
)
_REQUIRED_FIELDS = frozenset({"sequence_index", "wall_elapsed", "output_time_seconds"})
_SAMPLE_FIELDS = tuple(f.name for f in fields(ProgressSample))


@dataclass(frozen=True)
class StatsRecord:
    source_profile: SourceProfile
    history: tuple[ProgressSample, ...] = ()


def stats_path_for(input_path: Path) -> Path:
    """Return ``<input-stem>.stats`` beside the input."""
    return input_path.with_name(input_path.stem + STATS_SUFFIX)


def _sample_to_dict(sample: ProgressSample) -> dict[str, Any]:
    return {name: getattr(sample, name) for name in _SAMPLE_FIELDS}


def _check_number(name: str, value: Any, *, optional: bool) -> Any:
    if value is None:
        if optional:
            return None
        raise RecordParseError(f"Missing required sample field {name!r}")
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool):
        raise RecordParseError(f"Invalid value for {name!r}: {value!r}")
    if name in _INT_FIELDS:
        if not isinstance(value, int):
            raise RecordParseError(f"Invalid integer for {name!r}: {value!r}")
        return value
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise RecordParseError(f"Invalid number for {name!r}: {value!r}")
    return float(value)


def _sample_from_dict(raw: Any) -> ProgressSample:
    if not isinstance(raw, dict):
        raise RecordParseError("Sample entry is not an object")
    values = {
        name: _check_number(
            name, raw.get(name), optional=name not in _REQUIRED_FIELDS
        )
        for name in _SAMPLE_FIELDS
    }
    return ProgressSample(**values)


def _profile_from_dict(raw: Any) -> SourceProfile:
    if not isinstance(raw, dict):
        raise RecordParseError("source_profile is not an object")
    duration = _check_number(
        "duration_seconds", raw.get("duration_seconds"), optional=False
    )
    bitrate = _check_number(
        "source_bitrate_bps", raw.get("source_bitrate_bps"), optional=False
    )
    return SourceProfile(duration_seconds=duration, source_bitrate_bps=bitrate)


def encode_record(record: StatsRecord) -> bytes:
    payload = {
        "format": FORMAT_TAG,
        "version": FORMAT_VERSION,
        "source_profile": {
            "duration_seconds": record.source_profile.duration_seconds,
            "source_bitrate_bps": record.source_profile.source_bitrate_bps,
        },
        "history": [_sample_to_dict(sample) for sample in record.history],
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def decode_record(data: bytes) -> StatsRecord:
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RecordParseError(f"Stats record is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise RecordParseError("Stats record root is not an object")
    tag = raw.get("format")
    version = raw.get("version")
    # True and 1.0 compare equal to 1.
    if tag != FORMAT_TAG or type(version) is not int or version != FORMAT_VERSION:
        raise UnsupportedVersionError(
            f"Unsupported stats record (format={tag!r}, version={version!r}); "
            f"this build reads {FORMAT_TAG!r} version {FORMAT_VERSION}. "
            "Re-run the transcode to create a new record.",
            tag=tag,
            version=version,
        )
    history = raw.get("history")
    if not isinstance(history, list):
        raise RecordParseError("history is not a list")
    profile = _profile_from_dict(raw.get("source_profile"))
    samples = tuple(_sample_from_dict(item) for item in history)
    for previous, sample in zip(samples, samples[1:]):
        if sample.sequence_index <= previous.sequence_index:
            raise RecordParseError(
                f"sequence_index must increase: {sample.sequence_index} "
                f"after {previous.sequence_index}"
            )
    return StatsRecord(source_profile=profile, history=samples)


def save(record: StatsRecord, destination: Path) -> None:
    """Write the record atomically as gzip-compressed JSON."""
    temp_path = destination.with_name(destination.name + ".tmp")
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(temp_path, "wb", compresslevel=9) as handle:
            handle.write(encode_record(record))
        os.replace(temp_path, destination)
    except OSError as exc:
        logger.exception("Failed to save stats to %s", destination)
        try:
            temp_path.unlink()
        except OSError:
            pass
        raise RecordIOError(f"Failed to write {destination}: {exc}") from exc
    logger.info("Saved %s samples to %s", len(record.history), destination)


def load(source: Path) -> StatsRecord:
    """Read a stats record written by ``save``."""
    try:
        with gzip.open(source, "rb") as handle:
            data = handle.read()
    except gzip.BadGzipFile as exc:
        raise RecordParseError(f"{source} is not a stats record: {exc}") from exc
    except (EOFError, zlib.error) as exc:
        raise RecordParseError(f"{source} is truncated or corrupt: {exc}") from exc
    except OSError as exc:
        raise RecordIOError(f"Failed to read {source}: {exc}") from exc
    record = decode_record(data)
    logger.info("Loaded %s samples from %s", len(record.history), source)
    return record
