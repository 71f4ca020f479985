"""Tests for stats record persistence."""

from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest

from ffprog import record_store
from ffprog.errors import RecordIOError, RecordParseError, UnsupportedVersionError
from ffprog.probe import SourceProfile
from ffprog.record_store import (
    FORMAT_TAG,
    FORMAT_VERSION,
    StatsRecord,
    encode_record,
    load,
    save,
    stats_path_for,
)


@pytest.fixture
def record(make_sample) -> StatsRecord:
    return StatsRecord(
        source_profile=SourceProfile(duration_seconds=60.0, source_bitrate_bps=2e6),
        history=(
            make_sample(0, 0.5, 1.25, frame_count=30, fps=59.94, total_size_bytes=1),
            make_sample(1, 1.0, 2.5, speed_multiplier=2.5, dup_frames=0),
            make_sample(3, 1.5, 3.75, encoded_bitrate_bps=1234.5, drop_frames=7),
        ),
    )


def _write_payload(path: Path, payload: object) -> None:
    with gzip.open(path, "wb") as handle:
        handle.write(json.dumps(payload).encode("utf-8"))


def test_stats_path_uses_input_stem(tmp_path: Path) -> None:
    expected = tmp_path / "movie.final.stats"
    assert stats_path_for(tmp_path / "movie.final.mkv") == expected
    assert stats_path_for(Path("clip")) == Path("clip.stats")


def test_save_then_load_preserves_every_field(tmp_path: Path, record) -> None:
    destination = tmp_path / "out" / "movie.stats"
    save(record, destination)
    assert load(destination) == record
    assert not (tmp_path / "out" / "movie.stats.tmp").exists()


def test_empty_history_is_a_valid_record(tmp_path: Path) -> None:
    empty = StatsRecord(SourceProfile(10.0))
    save(empty, tmp_path / "empty.stats")
    assert load(tmp_path / "empty.stats") == empty


def test_format_tag_precedes_payload(record) -> None:
    text = encode_record(record).decode("utf-8")
    assert text.startswith(f'{{"format":"{FORMAT_TAG}","version":{FORMAT_VERSION}')


def test_absent_fields_stay_absent(tmp_path: Path, record) -> None:
    save(record, tmp_path / "r.stats")
    with gzip.open(tmp_path / "r.stats", "rb") as handle:
        raw = json.loads(handle.read())
    assert raw["history"][1]["fps"] is None
    assert load(tmp_path / "r.stats").history[1].fps is None


def test_future_version_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "future.stats"
    _write_payload(path, {"format": FORMAT_TAG, "version": 99, "history": []})
    with pytest.raises(UnsupportedVersionError) as excinfo:
        load(path)
    assert excinfo.value.version == 99
    assert excinfo.value.exit_code == 5


def test_foreign_format_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "other.stats"
    _write_payload(path, {"format": "something-else", "version": 1})
    with pytest.raises(UnsupportedVersionError):
        load(path)


def test_plain_file_is_parse_error(tmp_path: Path) -> None:
    path = tmp_path / "plain.stats"
    path.write_text("not gzip at all", encoding="utf-8")
    with pytest.raises(RecordParseError):
        load(path)


def test_truncated_file_is_parse_error(tmp_path: Path, record) -> None:
    path = tmp_path / "cut.stats"
    save(record, path)
    data = path.read_bytes()
    path.write_bytes(data[: len(data) // 2])
    with pytest.raises(RecordParseError):
        load(path)


def test_invalid_json_is_parse_error(tmp_path: Path) -> None:
    path = tmp_path / "bad.stats"
    with gzip.open(path, "wb") as handle:
        handle.write(b"{broken")
    with pytest.raises(RecordParseError):
        load(path)


@pytest.mark.parametrize(
    "sample",
    [
        {"sequence_index": "0", "wall_elapsed": 0.0, "output_time_seconds": 0.0},
        {"sequence_index": 0, "wall_elapsed": None, "output_time_seconds": 0.0},
        {"sequence_index": 0, "wall_elapsed": 0.0, "output_time_seconds": True},
        {"sequence_index": 0.5, "wall_elapsed": 0.0, "output_time_seconds": 0.0},
        {"sequence_index": 0, "wall_elapsed": float("nan"), "output_time_seconds": 0},
        {"sequence_index": 0, "wall_elapsed": 0.0, "fps": float("inf")},
        ["not", "an", "object"],
    ],
)
def test_malformed_sample_is_parse_error(tmp_path: Path, sample) -> None:
    path = tmp_path / "malformed.stats"
    _write_payload(
        path,
        {
            "format": FORMAT_TAG,
            "version": FORMAT_VERSION,
            "source_profile": {"duration_seconds": 1.0, "source_bitrate_bps": 0.0},
            "history": [sample],
        },
    )
    with pytest.raises(RecordParseError):
        load(path)


@pytest.mark.parametrize("indices", [(1, 1), (2, 1), (0, 2, 2)])
def test_out_of_order_history_is_parse_error(tmp_path: Path, indices) -> None:
    path = tmp_path / "order.stats"
    history = [
        {"sequence_index": index, "wall_elapsed": 0.1 * n, "output_time_seconds": n}
        for n, index in enumerate(indices)
    ]
    _write_payload(
        path,
        {
            "format": FORMAT_TAG,
            "version": FORMAT_VERSION,
            "source_profile": {"duration_seconds": 5.0, "source_bitrate_bps": 0.0},
            "history": history,
        },
    )
    with pytest.raises(RecordParseError) as excinfo:
        load(path)
    assert excinfo.value.exit_code == 5
    assert "sequence_index must increase" in excinfo.value.message


@pytest.mark.parametrize("version", [True, 1.0, "1"])
def test_version_must_be_an_integer(tmp_path: Path, version) -> None:
    path = tmp_path / "typed.stats"
    _write_payload(
        path,
        {
            "format": FORMAT_TAG,
            "version": version,
            "source_profile": {"duration_seconds": 1.0, "source_bitrate_bps": 0.0},
            "history": [],
        },
    )
    with pytest.raises(UnsupportedVersionError):
        load(path)


def test_missing_file_is_io_error(tmp_path: Path) -> None:
    with pytest.raises(RecordIOError):
        load(tmp_path / "missing.stats")


def test_save_failure_cleans_temp_file(tmp_path: Path, record, monkeypatch) -> None:
    def fail_replace(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(record_store.os, "replace", fail_replace)
    destination = tmp_path / "movie.stats"
    with pytest.raises(RecordIOError):
        save(record, destination)
    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []
