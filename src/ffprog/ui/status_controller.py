"""Status bar controller for the TUI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from rich.text import Text

from ffprog.ui.formatters import ellipsize


@dataclass(frozen=True)
class StatusMessage:
    text: str
    level: str = "info"
    until: Optional[float] = None


class StatusController:
    """Transient messages over a mode-dependent key hint."""

    def __init__(self, now: Callable[[], float]) -> None:
        self._now = now
        self._message: Optional[StatusMessage] = None
        self._mode = "live"

    def show_message(
        self,
        text: str,
        *,
        level: str = "info",
        timeout: Optional[float] = None,
    ) -> None:
        if timeout is None:
            timeout = 6.0 if level in ("warn", "error") else 3.0
        until = None if timeout == 0 else self._now() + max(0.0, timeout)
        self._message = StatusMessage(text=text, level=level, until=until)

    def clear_message(self) -> None:
        self._message = None

    def set_mode(self, mode: str) -> None:
        """One of ``live``, ``replay`` or ``finished``."""
        self._mode = mode

    def render_line(self, width: int) -> Text:
        message = self._current_message()
        if message:
            line = ellipsize(message.text, width)
            style = None
            if message.level == "warn":
                style = "#ffcc66"
            elif message.level == "error":
                style = "#ff5f52"
            return Text(line, style=style) if style else Text(line)
        return Text(ellipsize(self._render_hint(), width))

    def _current_message(self) -> Optional[StatusMessage]:
        if not self._message:
            return None
        if self._message.until is None or self._message.until > self._now():
            return self._message
        self._message = None
        return None

    def _render_hint(self) -> str:
        if self._mode == "finished":
            return "s: statistics  q: quit"
        if self._mode == "replay":
            return "q: quit replay"
        return "q/Esc: cancel transcode"
