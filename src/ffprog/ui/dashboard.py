"""Text rendering for the progress dashboard and the statistics screen.

Everything here is a pure function of the current update and the rolling
series, so the Textual app and the plain renderer draw identical text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ffprog.aggregator import ProgressUpdate, SeriesSummary, series, summarize
from ffprog.probe import SourceProfile
from ffprog.progress import ProgressSample
from ffprog.ui.formatters import (
    ellipsize,
    format_bitrate,
    format_count,
    format_duration,
    format_fps,
    format_percent,
    format_size,
    format_speed,
    render_chart,
    render_sparkline,
    render_status_bar,
)
from ffprog.ui.series import ChartSeries, SparkSeries

MIN_WIDTH = 40
MIN_HEIGHT = 10

STATS_TABS = ("Bitrate", "FPS", "Speed")
_TAB_FIELDS = {
    "Bitrate": "encoded_bitrate_bps",
    "FPS": "fps",
    "Speed": "speed_multiplier",
}


def is_too_small(width: int, height: int) -> bool:
    return width < MIN_WIDTH or height < MIN_HEIGHT


class DashboardState:
    """Rolling series and the latest update for one run or replay."""

    def __init__(self, profile: SourceProfile) -> None:
        self.profile = profile
        self.latest: Optional[ProgressUpdate] = None
        self.fps = SparkSeries()
        self.speed = SparkSeries()
        self.bitrate = ChartSeries(profile.source_bitrate_bps)
        self.frames_drawn = 0

    def apply(self, update: ProgressUpdate) -> None:
        sample = update.sample
        self.latest = update
        self.fps.push(sample.fps)
        self.speed.push(sample.speed_multiplier)
        rate = sample.encoded_bitrate_bps
        if rate is None:
            rate = update.metrics.smoothed_bitrate_bps
        self.bitrate.push(rate)


def gauge_title(update: Optional[ProgressUpdate]) -> str:
    if update is None:
        run_time = out_time = None
    else:
        run_time = update.sample.wall_elapsed
        out_time = update.sample.output_time_seconds
    return (
        f"Progress / Run-time: {format_duration(run_time)}"
        f" / Out-time: {format_duration(out_time)}"
    )


def render_gauge(update: Optional[ProgressUpdate], width: int) -> str:
    fraction = update.metrics.completion_fraction if update else 0.0
    label = f" {format_percent(fraction)}"
    bar = render_status_bar(max(1, width - len(label)), fraction)
    return bar + label


def tiles(update: Optional[ProgressUpdate]) -> list[tuple[str, str]]:
    """Titled values for the tile row, in display order."""
    if update is None:
        sample: Optional[ProgressSample] = None
    else:
        sample = update.sample
    metrics = update.metrics if update else None
    return [
        ("Frame", format_count(sample.frame_count if sample else None)),
        ("Total size", format_size(sample.total_size_bytes if sample else None)),
        (
            "Dup / Drop frames",
            f"{format_count(sample.dup_frames if sample else None)}"
            f" / {format_count(sample.drop_frames if sample else None)}",
        ),
        ("ETA", format_duration(metrics.eta_seconds if metrics else None)),
        (
            "Projected size",
            format_size(metrics.projected_final_bytes if metrics else None),
        ),
        (
            "Smoothed bitrate",
            format_bitrate(metrics.smoothed_bitrate_bps if metrics else None),
        ),
    ]


def fps_title(state: DashboardState) -> str:
    return f"FPS: {format_fps(state.fps.current)}"


def speed_title(state: DashboardState) -> str:
    return f"Speed: {format_speed(state.speed.current)}"


def bitrate_title(state: DashboardState) -> str:
    return f"Bitrate: {format_bitrate(state.bitrate.current)}"


def render_fps_sparkline(state: DashboardState, width: int) -> str:
    return render_sparkline(state.fps.values, width, state.fps.maximum)


def render_speed_sparkline(state: DashboardState, width: int) -> str:
    return render_sparkline(state.speed.values, width, state.speed.maximum)


def render_bitrate_chart(state: DashboardState, width: int, height: int) -> str:
    chart = state.bitrate
    return render_chart(
        chart.values,
        width,
        height,
        y_bounds=chart.y_bounds(),
        baseline=chart.baseline or None,
    )


def summary_line(update: Optional[ProgressUpdate], width: int = 80) -> str:
    """The one-line rendering used when the full dashboard cannot be drawn."""
    if update is None:
        text = "waiting for progress..."
    else:
        metrics = update.metrics
        sample = update.sample
        text = (
            f"{format_percent(metrics.completion_fraction)}"
            f" out {format_duration(sample.output_time_seconds)}"
            f" eta {format_duration(metrics.eta_seconds)}"
            f" size {format_size(sample.total_size_bytes)}"
            f" speed {format_speed(sample.speed_multiplier)}"
        )
    return ellipsize(text, width)


@dataclass(frozen=True)
class StatsTab:
    title: str
    points: list[tuple[float, float]]
    summary: Optional[SeriesSummary]
    baseline: Optional[float] = None


def build_stats_tabs(
    profile: SourceProfile, history: Sequence[ProgressSample]
) -> list[StatsTab]:
    tabs = []
    for title in STATS_TABS:
        attr = _TAB_FIELDS[title]
        baseline = profile.source_bitrate_bps if title == "Bitrate" else None
        tabs.append(
            StatsTab(
                title=title,
                points=series(history, attr),
                summary=summarize(history, attr),
                baseline=baseline or None,
            )
        )
    return tabs


def _format_tab_value(title: str, value: Optional[float]) -> str:
    if title == "Bitrate":
        return format_bitrate(value)
    if title == "FPS":
        return format_fps(value)
    return format_speed(value)


def render_tab_bar(selected: int) -> str:
    parts = []
    for index, title in enumerate(STATS_TABS):
        parts.append(f"[{title}]" if index == selected else f" {title} ")
    return "|".join(parts)


def render_stats_tab(tab: StatsTab, width: int, height: int) -> str:
    """Chart over wall time followed by the min/mean/max summary."""
    summary = tab.summary
    if summary is None:
        return f"No {tab.title.lower()} samples recorded."
    fmt = _format_tab_value
    footer = (
        f"min {fmt(tab.title, summary.minimum)}"
        f"  mean {fmt(tab.title, summary.mean)}"
        f"  max {fmt(tab.title, summary.maximum)}"
        f"  last {fmt(tab.title, summary.last)}"
        f"  ({summary.count} samples)"
    )
    low = min(summary.minimum, tab.baseline * 0.9) if tab.baseline else summary.minimum
    high = max(summary.maximum, tab.baseline * 1.1) if tab.baseline else summary.maximum
    if high <= low:
        high = low + 1.0
    chart = render_chart(
        [value for _, value in tab.points],
        max(1, width),
        max(1, height - 2),
        y_bounds=(max(0.0, low), high),
        baseline=tab.baseline,
    )
    span = tab.points[-1][0] - tab.points[0][0]
    axis = f"0s .. {span:.1f}s wall time"
    return "\n".join([chart, ellipsize(axis, width), ellipsize(footer, width)])
