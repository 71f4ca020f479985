"""Single-line rich renderer for ``--plain`` and terminals without Textual."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from ffprog.aggregator import ProgressUpdate
from ffprog.probe import SourceProfile
from ffprog.progress import ProgressSample
from ffprog.session import LiveRun
from ffprog.ui.dashboard import build_stats_tabs, summary_line
from ffprog.ui.driver import RENDER_HZ, FrameCoalescer, visual_timeline
from ffprog.ui.formatters import format_bitrate, format_fps, format_speed

logger = logging.getLogger(__name__)


def _render(update: Optional[ProgressUpdate], console: Console) -> Text:
    return Text(summary_line(update, max(1, console.width - 1)), style="bold")


def run_plain_live(
    live_run: LiveRun,
    *,
    console: Optional[Console] = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], float] = time.monotonic,
) -> int:
    """Show a summary line until the run ends; return the number of frames drawn."""
    console = console or Console(stderr=True)
    coalescer = FrameCoalescer(RENDER_HZ)
    drawn = 0
    with Live(
        _render(None, console),
        console=console,
        refresh_per_second=RENDER_HZ,
        auto_refresh=False,
        transient=False,
    ) as live:
        try:
            while True:
                done = live_run.is_done
                update = live_run.context.updates.drain_latest()
                if update is not None:
                    coalescer.offer(update)
                if done:
                    frame = coalescer.flush(now())
                else:
                    frame = coalescer.poll(now())
                if frame is not None:
                    live.update(_render(frame.update, console), refresh=True)
                    drawn += 1
                if done:
                    break
                sleep(1.0 / RENDER_HZ)
        except KeyboardInterrupt:
            logger.info("Cancel requested from console")
            live_run.cancel()
    return drawn


def run_plain_replay(
    updates: Sequence[ProgressUpdate],
    *,
    speed: float = 1.0,
    console: Optional[Console] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Draw the frames the live renderer would have drawn, at the recorded pace."""
    if speed <= 0:
        raise ValueError("speed must be positive")
    console = console or Console(stderr=True)
    previous: Optional[float] = None
    drawn = 0
    with Live(
        _render(None, console),
        console=console,
        refresh_per_second=RENDER_HZ,
        auto_refresh=False,
        transient=False,
    ) as live:
        try:
            for at, frame in visual_timeline(updates, RENDER_HZ):
                if previous is not None and at > previous:
                    sleep((at - previous) / speed)
                previous = at
                live.update(_render(frame.update, console), refresh=True)
                drawn += 1
        except KeyboardInterrupt:
            logger.info("Replay interrupted")
    return drawn


def stats_table(profile: SourceProfile, history: Sequence[ProgressSample]) -> Table:
    table = Table(title="Run statistics")
    table.add_column("Series")
    table.add_column("Samples", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Last", justify="right")
    formatters = {
        "Bitrate": format_bitrate,
        "FPS": format_fps,
        "Speed": format_speed,
    }
    for tab in build_stats_tabs(profile, history):
        summary = tab.summary
        if summary is None:
            table.add_row(tab.title, "0", "--", "--", "--", "--")
            continue
        fmt = formatters[tab.title]
        table.add_row(
            tab.title,
            str(summary.count),
            fmt(summary.minimum),
            fmt(summary.mean),
            fmt(summary.maximum),
            fmt(summary.last),
        )
    if profile.source_bitrate_bps:
        table.caption = f"Source bitrate {format_bitrate(profile.source_bitrate_bps)}"
    return table
