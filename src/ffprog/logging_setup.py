"""Logging setup for ffprog.

All diagnostics go to a rotating log file. The console handler writes to
stderr and is quieted to WARNING while a full-screen UI is active, since
anything printed there would tear the display.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
LEVEL_ENV = "FFPROG_LOG_LEVEL"


def _default_log_dir() -> Path:
    local_appdata = os.getenv("LOCALAPPDATA")
    if local_appdata:
        return Path(local_appdata) / "ffprog" / "logs"
    return Path.home() / ".ffprog" / "logs"


def _resolve_level(verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(os.getenv(LEVEL_ENV, "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _is_console(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(
        handler, logging.FileHandler
    )


def init_logging(
    app_name: str = "ffprog",
    *,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """Attach file and console handlers to the root logger; return the log path."""
    log_dir = log_dir or _default_log_dir()
    log_path = log_dir / f"{app_name}.log"
    level = _resolve_level(verbose)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=2_000_000,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
    except OSError:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    if not any(_is_console(h) for h in root.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)

    logging.getLogger(app_name).info("Logging initialized at %s", log_path)
    return log_path


def set_console_level(level: int) -> None:
    """Adjust console (stderr) handler level only."""
    for handler in logging.getLogger().handlers:
        if _is_console(handler):
            handler.setLevel(level)
