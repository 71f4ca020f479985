"""Tests for the ffmpeg process host."""

from __future__ import annotations

import io
import subprocess

import pytest

from ffprog import transcoder
from ffprog.errors import ProcessError
from ffprog.transcoder import TranscodeProcess, build_command


class FakePopen:
    def __init__(self, stdout: bytes, stderr: bytes = b"", returncode: int = 0):
        self.stdout = io.BufferedReader(io.BytesIO(stdout))
        self.stderr = io.BytesIO(stderr)
        self.returncode = returncode
        self.pid = 4242
        self.running = True
        self.terminated = False
        self.killed = False
        self.stubborn = False

    def wait(self, timeout=None) -> int:
        if self.stubborn and timeout is not None and not self.killed:
            raise subprocess.TimeoutExpired("ffmpeg", timeout)
        self.running = False
        return self.returncode

    def poll(self):
        return None if self.running else self.returncode

    def terminate(self) -> None:
        self.terminated = True

    def kill(self) -> None:
        self.killed = True


def _patch_popen(monkeypatch, fake: FakePopen) -> list[list[str]]:
    commands: list[list[str]] = []

    def factory(command, **kwargs):
        commands.append(command)
        return fake

    monkeypatch.setattr(transcoder.subprocess, "Popen", factory)
    return commands


def test_build_command_adds_progress_flags() -> None:
    command = build_command(["-i", "in.mkv", "out.mp4"], overwrite=False)
    assert command[:3] == ["ffmpeg", "-progress", "pipe:1"]
    assert "-nostats" in command
    assert "-nostdin" in command
    assert command[command.index("-stats_period") + 1] == "0.5"
    assert "-n" in command and "-y" not in command
    assert command[-3:] == ["-i", "in.mkv", "out.mp4"]


def test_build_command_overwrite_and_binary() -> None:
    command = build_command(["x"], overwrite=True, binary="/opt/ff", stats_period=1)
    assert command[0] == "/opt/ff"
    assert "-y" in command
    assert command[command.index("-stats_period") + 1] == "1"


def test_chunks_stream_stdout(monkeypatch) -> None:
    fake = FakePopen(b"frame=1\nprogress=continue\n")
    commands = _patch_popen(monkeypatch, fake)
    process = TranscodeProcess(["-i", "a", "b"])
    process.start()
    data = b"".join(process.chunks(size=4))
    assert data == b"frame=1\nprogress=continue\n"
    assert process.wait() == 0
    assert commands[0][-3:] == ["-i", "a", "b"]


def test_wait_raises_with_stderr_tail(monkeypatch) -> None:
    fake = FakePopen(b"", stderr=b"warning\nUnknown encoder 'x266'\n", returncode=1)
    _patch_popen(monkeypatch, fake)
    process = TranscodeProcess(["-c:v", "x266"])
    process.start()
    list(process.chunks())
    with pytest.raises(ProcessError) as excinfo:
        process.wait()
    assert excinfo.value.message == "Unknown encoder 'x266'"
    assert excinfo.value.returncode == 1
    assert "warning" in excinfo.value.stderr_tail


def test_terminated_process_exit_is_not_an_error(monkeypatch) -> None:
    fake = FakePopen(b"", returncode=255)
    _patch_popen(monkeypatch, fake)
    process = TranscodeProcess([])
    process.start()
    process.terminate()
    assert fake.terminated
    assert process.was_terminated
    assert process.wait() == 255


def test_terminate_kills_stubborn_child(monkeypatch) -> None:
    fake = FakePopen(b"")
    fake.stubborn = True
    _patch_popen(monkeypatch, fake)
    process = TranscodeProcess([])
    process.start()
    process.terminate()
    assert fake.killed


def test_start_failure_is_process_error(monkeypatch) -> None:
    def boom(*_args, **_kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(transcoder.subprocess, "Popen", boom)
    with pytest.raises(ProcessError):
        TranscodeProcess([]).start()


def test_chunks_before_start() -> None:
    with pytest.raises(RuntimeError):
        next(TranscodeProcess([]).chunks())
