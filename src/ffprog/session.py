"""Run orchestration: stream reader, update queue and one-shot finalization.

Two cooperating sides share a ``RunContext``: the reader thread pushes every
parsed sample through the aggregator and offers the result to a bounded
``LatestQueue``; the renderer drains that queue at its own cadence. The queue
drops its oldest entry when full, so neither side ever blocks the other. The
persisted record is always built from the aggregator history, never from the
queue.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import threading
import time
from typing import Callable, Iterable, Optional, Protocol

from typing_extensions import TypeAlias

from ffprog.aggregator import Aggregator, ProgressUpdate
from ffprog.errors import FfprogError, ProcessError, RecordError
from ffprog.probe import SourceProfile
from ffprog.progress import ProgressParser, ProgressSample
from ffprog.record_store import StatsRecord, save

logger = logging.getLogger(__name__)

Clock: TypeAlias = Callable[[], float]


class RunOutcome(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class LatestQueue:
    """Bounded queue that drops the oldest pending update when full."""

    def __init__(self, maxsize: int = 8) -> None:
        self._items: deque[ProgressUpdate] = deque(maxlen=max(1, maxsize))
        self._lock = threading.Lock()
        self.dropped = 0

    def put(self, item: ProgressUpdate) -> None:
        with self._lock:
            if len(self._items) == self._items.maxlen:
                self.dropped += 1
            self._items.append(item)

    def drain_latest(self) -> Optional[ProgressUpdate]:
        """Empty the queue and return only the newest update."""
        with self._lock:
            if not self._items:
                return None
            latest = self._items[-1]
            self._items.clear()
            return latest

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class CompletionGate:
    """One-shot latch: ``claim()`` is True for exactly one caller."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed = False

    def claim(self) -> bool:
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    @property
    def is_claimed(self) -> bool:
        with self._lock:
            return self._claimed


class RunContext:
    """Everything one run (or one replay) owns; never shared across runs."""

    def __init__(
        self,
        profile: SourceProfile,
        *,
        queue_size: int = 8,
        clock: Optional[Clock] = None,
    ) -> None:
        self.profile = profile
        self._start = time.monotonic()
        self.clock: Clock = clock or (lambda: time.monotonic() - self._start)
        self.parser = ProgressParser(self.clock)
        self.aggregator = Aggregator(profile)
        self.updates = LatestQueue(queue_size)
        self.gate = CompletionGate()
        self._lock = threading.Lock()
        self.last_activity = self.clock()

    def ingest(self, chunk: bytes) -> int:
        """Feed raw bytes through parser and aggregator; return new samples."""
        self.last_activity = self.clock()
        count = 0
        for sample in self.parser.feed(chunk):
            self._push(sample)
            count += 1
        return count

    def close_stream(self) -> int:
        count = 0
        for sample in self.parser.close():
            self._push(sample)
            count += 1
        return count

    def _push(self, sample: ProgressSample) -> None:
        with self._lock:
            metrics = self.aggregator.update(sample)
        self.updates.put(ProgressUpdate(sample, metrics))

    def record(self) -> StatsRecord:
        with self._lock:
            history = self.aggregator.history
        return StatsRecord(source_profile=self.profile, history=history)


class ChunkSource(Protocol):
    def chunks(self) -> Iterable[bytes]: ...

    def wait(self) -> int: ...

    def terminate(self) -> None: ...


@dataclass
class RunResult:
    outcome: RunOutcome
    record: StatsRecord
    record_path: Optional[Path] = None
    saved: bool = False
    error: Optional[FfprogError] = None
    save_error: Optional[RecordError] = None


class LiveRun:
    """Drive one transcode from stream to persisted record."""

    def __init__(
        self,
        context: RunContext,
        process: ChunkSource,
        *,
        record_path: Optional[Path],
        save_stats: bool = True,
    ) -> None:
        self.context = context
        self._process = process
        self._record_path = record_path
        self._save_stats = save_stats
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._outcome: Optional[RunOutcome] = None
        self._error: Optional[FfprogError] = None
        self._result: Optional[RunResult] = None
        self._finalized = threading.Event()
        self._thread = threading.Thread(
            target=self._read_loop, name="ProgressReader", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def outcome(self) -> Optional[RunOutcome]:
        return self._outcome

    @property
    def error(self) -> Optional[FfprogError]:
        return self._error

    def _read_loop(self) -> None:
        try:
            for chunk in self._process.chunks():
                self.context.ingest(chunk)
            self.context.close_stream()
            self._process.wait()
        except ProcessError as exc:
            logger.error("Transcode failed: %s", exc.message)
            self._error = exc
        except OSError as exc:
            logger.exception("Reading transcoder output failed")
            self._error = ProcessError(f"Lost transcoder output: {exc}")
        finally:
            if self._cancelled.is_set():
                self._outcome = RunOutcome.CANCELLED
            elif self._error is not None:
                self._outcome = RunOutcome.FAILED
            else:
                self._outcome = RunOutcome.COMPLETED
            logger.info(
                "Stream finished outcome=%s samples=%s skipped_blocks=%s",
                self._outcome.value,
                len(self.context.aggregator),
                self.context.parser.state.skipped_blocks,
            )
            self._done.set()

    def cancel(self) -> None:
        """User interrupt: stop the transcoder; the reader then winds down."""
        if self._done.is_set():
            return
        logger.info("Cancellation requested")
        self._cancelled.set()
        self._process.terminate()

    def abort(self, error: FfprogError) -> None:
        """Mark a run that failed before its reader could start."""
        self._error = error
        self._outcome = RunOutcome.FAILED
        self._done.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread.ident is not None:
            self._thread.join(timeout)
        return self._done.is_set()

    def finalize(self, timeout: Optional[float] = 10.0) -> RunResult:
        """Persist the history once; later calls return the same result."""
        if not self.context.gate.claim():
            self._finalized.wait()
            if self._result is None:
                raise RuntimeError("Run finalization failed in another caller")
            return self._result
        try:
            result = self._persist(timeout)
            self._result = result
        finally:
            self._finalized.set()
        return result

    def _persist(self, timeout: Optional[float]) -> RunResult:
        if not self.join(timeout):
            logger.warning("Reader still running at finalize; saving partial history")
            self._cancelled.set()
        outcome = self._outcome or RunOutcome.CANCELLED
        record = self.context.record()
        result = RunResult(
            outcome=outcome,
            record=record,
            record_path=self._record_path,
            error=self._error,
        )
        if self._save_stats and self._record_path is not None:
            try:
                save(record, self._record_path)
                result.saved = True
            except RecordError as exc:
                result.save_error = exc
        return result
