"""Tests for hangwatch helpers."""

from __future__ import annotations

import io

from ffprog import hangwatch


def test_enable_faulthandler_creates_hangdump(tmp_path, monkeypatch) -> None:
    calls: list[object] = []

    def fake_enable(*, file, all_threads: bool) -> None:
        calls.append((file, all_threads))

    monkeypatch.setattr(hangwatch.faulthandler, "enable", fake_enable)
    log_path = tmp_path / "ffprog.log"
    hang_path = hangwatch.enable_faulthandler(log_path)
    assert hang_path.name == "hangdump.log"
    assert hang_path.parent == tmp_path
    assert calls
    handle = hangwatch._DUMP_FILE
    assert handle is not None
    handle.close()
    hangwatch._DUMP_FILE = None


def test_dump_threads_writes_header(monkeypatch) -> None:
    buffer = io.StringIO()

    def fake_dump_traceback(*, file, all_threads: bool) -> None:
        file.write("traceback")

    monkeypatch.setattr(hangwatch.faulthandler, "dump_traceback", fake_dump_traceback)
    monkeypatch.setattr(hangwatch, "_DUMP_FILE", buffer)
    hangwatch.dump_threads("test")
    output = buffer.getvalue()
    assert "test" in output
    assert "traceback" in output


def test_dump_threads_without_file_is_noop(monkeypatch) -> None:
    monkeypatch.setattr(hangwatch, "_DUMP_FILE", None)
    hangwatch.dump_threads("ignored")


def test_watchdog_reports_once_per_window(monkeypatch) -> None:
    dumps: list[str] = []
    stalls: list[float] = []
    now = [100.0]
    monkeypatch.setattr(hangwatch, "dump_threads", dumps.append)
    watchdog = hangwatch.StallWatchdog(
        lambda: 80.0,
        threshold_seconds=15.0,
        repeat_seconds=30.0,
        on_stall=stalls.append,
        now=lambda: now[0],
    )
    assert watchdog.check() == 20.0
    now[0] = 110.0
    assert watchdog.check() is None
    now[0] = 131.0
    assert watchdog.check() == 51.0
    assert stalls == [20.0, 51.0]
    assert dumps == ["no progress for 20.0s", "no progress for 51.0s"]


def test_watchdog_quiet_while_progress_flows(monkeypatch) -> None:
    dumps: list[str] = []
    monkeypatch.setattr(hangwatch, "dump_threads", dumps.append)
    watchdog = hangwatch.StallWatchdog(
        lambda: 95.0, threshold_seconds=15.0, now=lambda: 100.0
    )
    assert watchdog.check() is None
    assert dumps == []


def test_watchdog_run_loop_stops(monkeypatch) -> None:
    calls: list[str] = []

    class _Stop:
        def __init__(self) -> None:
            self._set = False

        def is_set(self) -> bool:
            return self._set

        def set(self) -> None:
            self._set = True

        def wait(self, _seconds: float) -> bool:
            self._set = True
            return True

    monkeypatch.setattr(hangwatch, "dump_threads", calls.append)
    watchdog = hangwatch.StallWatchdog(
        lambda: 0.0, threshold_seconds=1.0, now=lambda: 100.0
    )
    watchdog._stop_event = _Stop()  # type: ignore[assignment]
    watchdog._run()
    assert calls == ["no progress for 100.0s"]
