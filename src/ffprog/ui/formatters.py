from __future__ import annotations

import math
from typing import Optional, Sequence

SPARK_BLOCKS = " ▁▂▃▄▅▆▇█"
PLACEHOLDER = "--"


def format_duration(seconds: Optional[float]) -> str:
    """Render seconds as ``HH:MM:SS``; unknown values render as dashes."""
    if seconds is None or not math.isfinite(seconds):
        return "--:--:--"
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_size(size: Optional[int]) -> str:
    if size is None:
        return PLACEHOLDER
    if size > 1_000_000_000:
        return f"{size / 1_000_000_000:.2f} GiB"
    if size > 1_000_000:
        return f"{size / 1_000_000:.2f} MiB"
    if size > 1_000:
        return f"{size / 1_000:.2f} KiB"
    return f"{size} B"


def format_bitrate(bps: Optional[float]) -> str:
    if bps is None:
        return PLACEHOLDER
    return f"{bps / 1000.0:.1f} kbits/s"


def format_fps(fps: Optional[float]) -> str:
    return PLACEHOLDER if fps is None else f"{fps:.1f}"


def format_speed(speed: Optional[float]) -> str:
    return PLACEHOLDER if speed is None else f"{speed:.2f}x"


def format_count(value: Optional[int]) -> str:
    return PLACEHOLDER if value is None else str(value)


def format_percent(fraction: float) -> str:
    return f"{max(0.0, min(1.0, fraction)) * 100:.1f}%"


def ellipsize(text: str, max_len: int) -> str:
    if max_len <= 0:
        return ""
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return "." * max_len
    return text[: max_len - 3] + "..."


def render_status_bar(width: int, ratio: float) -> str:
    if width <= 1:
        return "█"[:width]
    inner = max(1, width - 2)
    filled = int(max(0.0, min(1.0, ratio)) * inner)
    bar = "=" * filled + "-" * max(0, inner - filled)
    return f"[{bar}]"


def render_sparkline(
    values: Sequence[float], width: int, maximum: Optional[float] = None
) -> str:
    """Render the newest ``width`` values as a single row of block glyphs."""
    if width <= 0:
        return ""
    data = list(values)[-width:]
    if not data:
        return ""
    top = maximum if maximum is not None else max(data)
    if top <= 0:
        return SPARK_BLOCKS[0] * len(data)
    steps = len(SPARK_BLOCKS) - 1
    glyphs = []
    for value in data:
        level = int(round(max(0.0, value) / top * steps))
        glyphs.append(SPARK_BLOCKS[min(steps, level)])
    return "".join(glyphs)


def _resample(values: Sequence[float], width: int) -> list[float]:
    if len(values) <= width:
        return list(values)
    step = len(values) / width
    return [values[min(len(values) - 1, int(i * step))] for i in range(width)]


def render_chart(
    values: Sequence[float],
    width: int,
    height: int,
    *,
    y_bounds: tuple[float, float],
    baseline: Optional[float] = None,
) -> str:
    """Plot values as a text chart; the baseline, if given, is drawn as ``-``."""
    if width <= 0 or height <= 0:
        return ""
    low, high = y_bounds
    span = high - low
    columns = _resample(values, width)

    def row_of(value: float) -> int:
        if span <= 0:
            return height - 1
        ratio = (value - low) / span
        return height - 1 - int(round(max(0.0, min(1.0, ratio)) * (height - 1)))

    grid = [[" "] * width for _ in range(height)]
    if baseline is not None and low <= baseline <= high:
        base_row = row_of(baseline)
        grid[base_row] = ["-"] * width
    for col, value in enumerate(columns):
        grid[row_of(value)][col] = "*"
    return "\n".join("".join(row).rstrip() or " " for row in grid)
