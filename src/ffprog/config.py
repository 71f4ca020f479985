"""Configuration persistence for ffprog."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppConfig:
    """Immutable user configuration loaded from disk."""

    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    stats_period: float = 0.5
    replay_speed: float = 1.0
    queue_size: int = 8
    save_stats: bool = True
    show_stats: bool = False
    stall_seconds: float = 15.0


def get_config_dir(app_name: str = "ffprog") -> Path:
    """Return the per-user config directory for the current platform."""
    if os.name == "nt":
        base = os.environ.get("APPDATA")
        if base:
            root = Path(base)
        else:
            root = Path.home() / "AppData" / "Roaming"
        return _ensure_dir(root / app_name)
    elif os.name == "posix":
        if _is_macos():
            return _ensure_dir(
                Path.home() / "Library" / "Application Support" / app_name
            )
        base = os.environ.get("XDG_CONFIG_HOME")
        root = Path(base) if base else Path.home() / ".config"
        return _ensure_dir(root / app_name)
    else:
        return _ensure_dir(Path.home() / ".config" / app_name)


def get_config_path() -> Path:
    """Return the full config file path."""
    return get_config_dir() / "config.json"


def load_config() -> AppConfig:
    """Load configuration from disk, falling back to defaults on error."""
    path = get_config_path()
    if not path.exists():
        return AppConfig()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.exception("Failed to load config from %s", path)
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()
    return _config_from_mapping(raw)


def save_config(cfg: AppConfig) -> None:
    """Persist configuration to disk atomically."""
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    temp_path.write_text(json.dumps(asdict(cfg), indent=2), encoding="utf-8")
    os.replace(temp_path, path)


def _ensure_dir(path: Path) -> Path:
    """Create the directory if needed and return the path."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def _is_macos() -> bool:
    """Return True when running on macOS."""
    return os.uname().sysname == "Darwin" if hasattr(os, "uname") else False


def _get_bool(raw: dict[str, Any], key: str, default: bool) -> bool:
    """Fetch a boolean value with fallback for invalid types."""
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    return default


def _get_int(
    raw: dict[str, Any],
    key: str,
    default: int,
    *,
    min_value: int,
    max_value: int,
) -> int:
    """Fetch an integer value clamped into range."""
    value = raw.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool):
        value = default
    return min(max_value, max(min_value, value))


def _get_float(
    raw: dict[str, Any],
    key: str,
    default: float,
    *,
    min_value: float,
    max_value: float,
) -> float:
    """Fetch a numeric value clamped into range."""
    value = raw.get(key, default)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        value = default
    return min(max_value, max(min_value, float(value)))


def _get_str(raw: dict[str, Any], key: str, default: str) -> str:
    """Fetch a non-empty string value."""
    value = raw.get(key, default)
    if not isinstance(value, str) or not value.strip():
        return default
    return value


def _config_from_mapping(raw: dict[str, Any]) -> AppConfig:
    """Normalize raw JSON data into an AppConfig."""
    return AppConfig(
        ffmpeg_binary=_get_str(raw, "ffmpeg_binary", "ffmpeg"),
        ffprobe_binary=_get_str(raw, "ffprobe_binary", "ffprobe"),
        stats_period=_get_float(
            raw, "stats_period", 0.5, min_value=0.1, max_value=10.0
        ),
        replay_speed=_get_float(
            raw, "replay_speed", 1.0, min_value=0.1, max_value=100.0
        ),
        queue_size=_get_int(raw, "queue_size", 8, min_value=1, max_value=256),
        save_stats=_get_bool(raw, "save_stats", True),
        show_stats=_get_bool(raw, "show_stats", False),
        stall_seconds=_get_float(
            raw, "stall_seconds", 15.0, min_value=1.0, max_value=3600.0
        ),
    )
