"""Thin host for the ffmpeg child process."""

from __future__ import annotations

from collections import deque
import logging
import subprocess
import threading
from io import BufferedReader
from typing import IO, Iterator, Optional, Sequence, cast

from ffprog.errors import ProcessError

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 40


def build_command(
    args: Sequence[str],
    *,
    overwrite: bool,
    binary: str = "ffmpeg",
    stats_period: float = 0.5,
) -> list[str]:
    """Return the ffmpeg command line with progress reporting on stdout."""
    return [
        binary,
        "-progress",
        "pipe:1",
        "-nostats",
        "-nostdin",
        "-hide_banner",
        "-stats_period",
        f"{stats_period:g}",
        "-loglevel",
        "warning",
        "-y" if overwrite else "-n",
        *args,
    ]


class TranscodeProcess:
    """Spawn ffmpeg, stream its progress output and report how it ended."""

    def __init__(
        self,
        args: Sequence[str],
        *,
        overwrite: bool = False,
        binary: str = "ffmpeg",
        stats_period: float = 0.5,
    ) -> None:
        self.command = build_command(
            args, overwrite=overwrite, binary=binary, stats_period=stats_period
        )
        self._proc: Optional[subprocess.Popen[bytes]] = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_thread: Optional[threading.Thread] = None
        self._terminated = threading.Event()

    def start(self) -> None:
        logger.info("Starting transcoder: %s", self.command)
        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise ProcessError(f"Failed to start {self.command[0]}: {exc}") from exc
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(self._proc.stderr,),
            name="TranscoderStderr",
            daemon=True,
        )
        self._stderr_thread.start()

    def _drain_stderr(self, stream: Optional[IO[bytes]]) -> None:
        if stream is None:
            return
        for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_tail.append(line)
                logger.debug("ffmpeg: %s", line)

    def chunks(self, size: int = 4096) -> Iterator[bytes]:
        """Yield raw stdout chunks until the child closes its end."""
        if self._proc is None or self._proc.stdout is None:
            raise RuntimeError("TranscodeProcess.start() was not called")
        stdout = cast(BufferedReader, self._proc.stdout)
        while True:
            chunk = stdout.read1(size)
            if not chunk:
                return
            yield chunk

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    @property
    def was_terminated(self) -> bool:
        return self._terminated.is_set()

    def wait(self) -> int:
        """Wait for exit; raise ProcessError unless it succeeded or was cancelled."""
        if self._proc is None:
            raise RuntimeError("TranscodeProcess.start() was not called")
        returncode = self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)
        logger.info("Transcoder exited code=%s", returncode)
        if returncode != 0 and not self.was_terminated:
            tail = self.stderr_tail
            raise ProcessError(
                tail.splitlines()[-1] if tail else f"ffmpeg exited with {returncode}",
                returncode=returncode,
                stderr_tail=tail,
            )
        return returncode

    def terminate(self) -> None:
        """Stop the child for a user cancellation."""
        self._terminated.set()
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        logger.info("Terminating transcoder pid=%s", proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            logger.warning("Transcoder ignored SIGTERM; killing pid=%s", proc.pid)
            proc.kill()
