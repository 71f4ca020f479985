"""Tests for run orchestration and one-shot finalization."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from ffprog import session
from ffprog.aggregator import DerivedMetrics, ProgressUpdate
from ffprog.errors import ProcessError, RecordIOError
from ffprog.probe import SourceProfile
from ffprog.progress import ProgressSample
from ffprog.record_store import load
from ffprog.session import (
    CompletionGate,
    LatestQueue,
    LiveRun,
    RunContext,
    RunOutcome,
)

PROFILE = SourceProfile(duration_seconds=10.0, source_bitrate_bps=1e6)


class FakeProcess:
    """Stands in for TranscodeProcess; optionally blocks until terminated."""

    def __init__(
        self,
        chunks: list[bytes],
        *,
        error: Optional[ProcessError] = None,
        hold: bool = False,
    ) -> None:
        self._chunks = chunks
        self._error = error
        self._release = threading.Event()
        self._hold = hold
        self.terminated = False

    def chunks(self):
        yield from self._chunks
        if self._hold:
            self._release.wait(5.0)

    def wait(self) -> int:
        if self._error is not None and not self.terminated:
            raise self._error
        return 0

    def terminate(self) -> None:
        self.terminated = True
        self._release.set()


def _context() -> RunContext:
    ticks = iter(range(10_000))
    return RunContext(PROFILE, queue_size=4, clock=lambda: float(next(ticks)))


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.01)


def _update(index: int) -> ProgressUpdate:
    sample = ProgressSample(index, float(index), float(index))
    return ProgressUpdate(sample, DerivedMetrics())


def test_latest_queue_drops_oldest() -> None:
    queue = LatestQueue(maxsize=2)
    for index in range(5):
        queue.put(_update(index))
    assert len(queue) == 2
    assert queue.dropped == 3
    latest = queue.drain_latest()
    assert latest is not None and latest.sample.sequence_index == 4
    assert queue.drain_latest() is None


def test_completion_gate_claims_once_across_threads() -> None:
    gate = CompletionGate()
    wins: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        result = gate.claim()
        with lock:
            wins.append(result)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert wins.count(True) == 1
    assert gate.is_claimed


def test_context_ingest_feeds_aggregator_and_queue(block) -> None:
    context = _context()
    count = context.ingest(block("5000000", total_size="100"))
    assert count == 1
    assert context.last_activity == 1.0
    update = context.updates.drain_latest()
    assert update is not None
    assert update.metrics.completion_fraction == 0.5
    assert context.record().history == context.aggregator.history


def test_completed_run_saves_record(tmp_path: Path, block) -> None:
    process = FakeProcess([block("1000000"), block("2000000", end=True)])
    run = LiveRun(_context(), process, record_path=tmp_path / "in.stats")
    run.start()
    assert run.join(5.0)
    result = run.finalize()
    assert result.outcome is RunOutcome.COMPLETED
    assert result.saved
    assert result.error is None
    assert len(result.record.history) == 2
    assert load(tmp_path / "in.stats") == result.record


def test_finalize_happens_once(tmp_path: Path, block, monkeypatch) -> None:
    saves: list[Path] = []
    monkeypatch.setattr(session, "save", lambda record, path: saves.append(path))
    run = LiveRun(
        _context(), FakeProcess([block("1000000")]), record_path=tmp_path / "a.stats"
    )
    run.start()
    results = []
    threads = [
        threading.Thread(target=lambda: results.append(run.finalize()))
        for _ in range(4)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(saves) == 1
    assert all(result is results[0] for result in results)
    assert run.finalize() is results[0]


def test_cancel_saves_partial_history(tmp_path: Path, block) -> None:
    process = FakeProcess([block("1000000")], hold=True)
    run = LiveRun(_context(), process, record_path=tmp_path / "in.stats")
    run.start()
    _wait_for(lambda: len(run.context.aggregator) == 1)
    run.cancel()
    result = run.finalize()
    assert process.terminated
    assert result.outcome is RunOutcome.CANCELLED
    assert result.saved
    assert len(load(tmp_path / "in.stats").history) == 1


def test_process_failure_still_saves(tmp_path: Path, block) -> None:
    error = ProcessError("Unknown encoder 'x266'", returncode=1)
    process = FakeProcess([block("1000000")], error=error)
    run = LiveRun(_context(), process, record_path=tmp_path / "in.stats")
    run.start()
    result = run.finalize()
    assert result.outcome is RunOutcome.FAILED
    assert result.error is error
    assert result.saved
    assert len(result.record.history) == 1


def test_abort_before_start(tmp_path: Path) -> None:
    run = LiveRun(_context(), FakeProcess([]), record_path=tmp_path / "in.stats")
    run.abort(ProcessError("ffmpeg not found"))
    result = run.finalize()
    assert result.outcome is RunOutcome.FAILED
    assert result.record.history == ()
    assert load(tmp_path / "in.stats").source_profile == PROFILE


def test_saving_can_be_disabled(tmp_path: Path, block) -> None:
    run = LiveRun(
        _context(),
        FakeProcess([block("1000000")]),
        record_path=tmp_path / "in.stats",
        save_stats=False,
    )
    run.start()
    result = run.finalize()
    assert not result.saved
    assert not (tmp_path / "in.stats").exists()


def test_save_error_is_reported(tmp_path: Path, block) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    run = LiveRun(
        _context(), FakeProcess([block("1000000")]), record_path=blocker / "in.stats"
    )
    run.start()
    result = run.finalize()
    assert result.outcome is RunOutcome.COMPLETED
    assert isinstance(result.save_error, RecordIOError)
    assert not result.saved


def test_crashed_finalize_releases_other_callers(
    tmp_path: Path, block, monkeypatch
) -> None:
    def broken_save(record, path) -> None:
        raise TypeError("unexpected")

    monkeypatch.setattr(session, "save", broken_save)
    run = LiveRun(
        _context(), FakeProcess([block("1000000")]), record_path=tmp_path / "a.stats"
    )
    run.start()
    with pytest.raises(TypeError):
        run.finalize()
    with pytest.raises(RuntimeError, match="finalization failed"):
        run.finalize(timeout=1.0)


def test_cancel_after_done_is_noop(tmp_path: Path) -> None:
    process = FakeProcess([])
    run = LiveRun(_context(), process, record_path=None)
    run.start()
    assert run.join(5.0)
    run.cancel()
    assert not process.terminated
    assert run.outcome is RunOutcome.COMPLETED


@pytest.mark.parametrize("size", [0, -3])
def test_queue_size_floor(size: int) -> None:
    queue = LatestQueue(size)
    queue.put(_update(0))
    queue.put(_update(1))
    assert len(queue) == 1
