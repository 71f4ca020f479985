"""Stall watchdog and faulthandler integration.

ffmpeg can go quiet for long stretches (probing, two-pass analysis, a blocked
output). The watchdog notices when no progress block has arrived for a while,
logs it, and dumps all thread stacks so a hang in ffprog itself can be told
apart from a slow transcoder.
"""

from __future__ import annotations

import faulthandler
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional, TextIO

logger = logging.getLogger(__name__)

_DUMP_FILE: Optional[TextIO] = None
_LOCK = threading.Lock()


def enable_faulthandler(log_path: Path) -> Path:
    """Route fatal tracebacks to ``hangdump.log`` beside the log file."""
    dump_path = log_path.parent / "hangdump.log"
    try:
        dump_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(dump_path, "a", encoding="utf-8")
    except OSError:
        logger.warning("Cannot open %s; faulthandler disabled", dump_path)
        return dump_path
    global _DUMP_FILE
    with _LOCK:
        _DUMP_FILE = handle
    faulthandler.enable(file=handle, all_threads=True)
    return dump_path


def dump_threads(label: str) -> None:
    """Append a labelled stack dump of every thread."""
    handle = _DUMP_FILE
    if handle is None:
        return
    stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
    with _LOCK:
        try:
            handle.write(f"\n[{stamp}] {label}\n")
            faulthandler.dump_traceback(file=handle, all_threads=True)
            handle.flush()
        except (OSError, ValueError):
            logger.warning("Thread dump for %r failed", label)


class StallWatchdog:
    """Background thread that reports a silent progress stream."""

    def __init__(
        self,
        get_last_activity: Callable[[], float],
        *,
        threshold_seconds: float = 15.0,
        repeat_seconds: float = 30.0,
        poll_seconds: float = 1.0,
        on_stall: Optional[Callable[[float], None]] = None,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self._get_last_activity = get_last_activity
        self._threshold_seconds = threshold_seconds
        self._repeat_seconds = repeat_seconds
        self._poll_seconds = poll_seconds
        self._on_stall = on_stall
        self._now = now
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="StallWatchdog", daemon=True
        )
        self._last_report: Optional[float] = None

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def check(self) -> Optional[float]:
        """Report once per repeat window; return the silence length if reported."""
        now = self._now()
        silent_for = now - self._get_last_activity()
        if silent_for <= self._threshold_seconds:
            return None
        if (
            self._last_report is not None
            and now - self._last_report < self._repeat_seconds
        ):
            return None
        self._last_report = now
        logger.warning("No progress from transcoder for %.1fs", silent_for)
        dump_threads(f"no progress for {silent_for:.1f}s")
        if self._on_stall is not None:
            self._on_stall(silent_for)
        return silent_for

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.check()
            self._stop_event.wait(self._poll_seconds)
