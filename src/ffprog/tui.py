"""Textual dashboard for live transcodes and replays."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Sequence

try:
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Horizontal, Vertical
    from textual.screen import Screen
    from textual.widgets import Static
    from rich.text import Text
except Exception as exc:  # pragma: no cover - depends on environment
    raise RuntimeError(
        "Textual is required for the TUI. Install the 'textual' dependency."
    ) from exc

from ffprog.aggregator import ProgressUpdate
from ffprog.hangwatch import StallWatchdog, dump_threads
from ffprog.logging_setup import set_console_level
from ffprog.probe import SourceProfile
from ffprog.progress import ProgressSample
from ffprog.session import LiveRun, RunOutcome
from ffprog.ui.dashboard import (
    STATS_TABS,
    DashboardState,
    bitrate_title,
    build_stats_tabs,
    fps_title,
    gauge_title,
    is_too_small,
    render_bitrate_chart,
    render_fps_sparkline,
    render_gauge,
    render_speed_sparkline,
    render_stats_tab,
    render_tab_bar,
    speed_title,
    summary_line,
    tiles,
)
from ffprog.ui.driver import RENDER_HZ, FrameCoalescer, ReplayPlayer
from ffprog.ui.status_controller import StatusController

logger = logging.getLogger(__name__)

TILE_IDS = ("frame", "size", "dupdrop", "eta", "projected", "smoothed")

APP_CSS = """
#gauge { height: 3; border: round $accent; }
#body { height: 1fr; }
#left { width: 1fr; }
.tile_row { height: 3; }
.tile { width: 1fr; border: round $primary; }
.spark { height: 1fr; border: round $primary; }
#bitrate_chart { width: 1fr; border: round $primary; }
#summary { height: 1; display: none; }
#status_bar { height: 1; }
#stats_tabs { height: 1; }
#stats_body { height: 1fr; border: round $primary; }
"""


class StatusBar(Static):
    """Status bar widget."""

    def __init__(self, controller: StatusController, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._controller = controller

    def render(self) -> Text:
        return self._controller.render_line(max(1, self.size.width))


class StatsScreen(Screen):
    """Post-run charts with one tab per series."""

    BINDINGS = [
        Binding("left", "previous_tab", "Previous"),
        Binding("right", "next_tab", "Next"),
        Binding("q", "close", "Quit"),
        Binding("escape", "close", "Quit"),
    ]

    def __init__(
        self, profile: SourceProfile, history: Sequence[ProgressSample]
    ) -> None:
        super().__init__()
        self._tabs = build_stats_tabs(profile, history)
        self.selected = 0

    def compose(self) -> ComposeResult:
        yield Static(render_tab_bar(self.selected), id="stats_tabs", markup=False)
        yield Static("", id="stats_body", markup=False)

    def on_mount(self) -> None:
        self._refresh_tab()

    def on_resize(self) -> None:
        self._refresh_tab()

    def action_previous_tab(self) -> None:
        self.selected = max(0, self.selected - 1)
        self._refresh_tab()

    def action_next_tab(self) -> None:
        self.selected = min(len(STATS_TABS) - 1, self.selected + 1)
        self._refresh_tab()

    def action_close(self) -> None:
        self.app.exit()

    def _refresh_tab(self) -> None:
        try:
            tabs = self.query_one("#stats_tabs", Static)
            body = self.query_one("#stats_body", Static)
        except Exception:
            return
        tabs.update(render_tab_bar(self.selected))
        tab = self._tabs[self.selected]
        body.border_title = tab.title
        width = max(1, body.content_size.width)
        height = max(3, body.content_size.height)
        body.update(render_stats_tab(tab, width, height))


class ProgressApp(App):
    """Dashboard for one live run or one replay."""

    CSS = APP_CSS
    TITLE = "ffprog"

    BINDINGS = [
        Binding("q", "quit_or_cancel", "Quit"),
        Binding("escape", "quit_or_cancel", "Quit"),
        Binding("ctrl+c", "quit_or_cancel", "Quit", priority=True),
        Binding("s", "show_stats", "Statistics"),
        Binding("ctrl+shift+d", "dump_threads", "Dump Threads"),
    ]

    def __init__(
        self,
        profile: SourceProfile,
        *,
        live_run: Optional[LiveRun] = None,
        replay: Optional[Sequence[ProgressUpdate]] = None,
        replay_speed: float = 1.0,
        show_stats: bool = False,
        stall_seconds: float = 15.0,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        if (live_run is None) == (replay is None):
            raise ValueError("exactly one of live_run or replay is required")
        super().__init__()
        self.profile = profile
        self._live_run = live_run
        self._replay = list(replay) if replay is not None else None
        self._replay_speed = replay_speed
        self._show_stats_on_end = show_stats
        self._stall_seconds = stall_seconds
        self._now = now
        self._state = DashboardState(profile)
        self._coalescer = FrameCoalescer(RENDER_HZ)
        self._status_controller = StatusController(now)
        self._status_controller.set_mode("live" if live_run else "replay")
        self._player: Optional[ReplayPlayer] = None
        self._watchdog: Optional[StallWatchdog] = None
        self._finished = False
        self._summary_only = False
        self._replayed: list[ProgressUpdate] = []

    def compose(self) -> ComposeResult:
        yield Static("", id="gauge", markup=False)
        with Horizontal(id="body"):
            with Vertical(id="left"):
                with Horizontal(classes="tile_row"):
                    for tile_id in TILE_IDS[:3]:
                        yield Static("", id=tile_id, classes="tile", markup=False)
                with Horizontal(classes="tile_row"):
                    for tile_id in TILE_IDS[3:]:
                        yield Static("", id=tile_id, classes="tile", markup=False)
                yield Static("", id="fps_spark", classes="spark", markup=False)
                yield Static("", id="speed_spark", classes="spark", markup=False)
            yield Static("", id="bitrate_chart", markup=False)
        yield Static("", id="summary", markup=False)
        yield StatusBar(self._status_controller, id="status_bar")

    # --- Lifecycle ---
    def on_mount(self) -> None:
        self._install_asyncio_exception_handler()
        self.set_interval(1.0 / RENDER_HZ, self._on_tick)
        if self._live_run is not None:
            self._start_watchdog(self._live_run)
        elif self._replay is not None:
            self._player = ReplayPlayer(self, self._replay_speed)
            self._player.start(self._replay)
        self._draw()
        logger.info("TUI mounted mode=%s", "live" if self._live_run else "replay")

    def on_unmount(self) -> None:
        self._stop_watchdog()
        if self._player is not None:
            self._player.stop()

    def on_resize(self) -> None:
        self._draw()

    def _install_asyncio_exception_handler(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        def handler(_loop: asyncio.AbstractEventLoop, context: dict) -> None:
            exc = context.get("exception")
            if exc:
                logger.exception("Asyncio exception", exc_info=exc)
            else:
                logger.error("Asyncio error: %s", context.get("message"))

        loop.set_exception_handler(handler)

    def _start_watchdog(self, live_run: LiveRun) -> None:
        context = live_run.context
        self._watchdog = StallWatchdog(
            lambda: context.last_activity,
            threshold_seconds=self._stall_seconds,
            now=context.clock,
            on_stall=lambda silent: self.call_from_thread(self._on_stall, silent),
        )
        self._watchdog.start()

    def _stop_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.stop()
            self._watchdog = None

    def _on_stall(self, silent_for: float) -> None:
        self.show_message(f"No progress for {silent_for:.0f}s", level="warn")

    # --- Update flow ---
    def offer_update(self, update: ProgressUpdate) -> None:
        self._replayed.append(update)
        self._coalescer.offer(update)

    def replay_finished(self) -> None:
        logger.info("Replay finished frames=%s", self._state.frames_drawn)
        self._on_finished()

    def show_message(self, text: str, *, level: str = "info") -> None:
        self._status_controller.show_message(text, level=level)
        self._refresh_status_bar()

    def _on_tick(self) -> None:
        live_run = self._live_run
        if live_run is not None and not self._finished:
            latest = live_run.context.updates.drain_latest()
            if latest is not None:
                self._coalescer.offer(latest)
        frame = self._coalescer.poll(self._now())
        if frame is not None:
            self._state.apply(frame.update)
            self._state.frames_drawn += 1
            self._draw()
        if live_run is not None and live_run.is_done and not self._finished:
            latest = live_run.context.updates.drain_latest()
            if latest is not None:
                self._coalescer.offer(latest)
            self._on_finished()
        self._refresh_status_bar()

    def _flush_pending(self) -> None:
        frame = self._coalescer.flush(self._now())
        if frame is not None:
            self._state.apply(frame.update)
            self._state.frames_drawn += 1
            self._draw()

    def _on_finished(self) -> None:
        if self._finished:
            return
        self._flush_pending()
        self._finished = True
        self._stop_watchdog()
        self._status_controller.set_mode("finished")
        live_run = self._live_run
        if live_run is not None:
            outcome = live_run.outcome
            logger.info("Live run ended outcome=%s", outcome.value if outcome else None)
            completed = outcome is RunOutcome.COMPLETED
            if not completed or not self._show_stats_on_end:
                self.exit()
                return
        if self._show_stats_on_end:
            self.action_show_stats()
        else:
            self.show_message("Replay finished", level="info")

    def _history(self) -> list[ProgressSample]:
        if self._live_run is not None:
            return list(self._live_run.context.aggregator.history)
        return [update.sample for update in self._replayed]

    # --- Rendering ---
    def _draw(self) -> None:
        if isinstance(self.screen, StatsScreen):
            return
        width = max(0, self.size.width)
        height = max(0, self.size.height)
        if self._summary_only or is_too_small(width, height):
            self._draw_summary(width)
            return
        try:
            self._draw_dashboard()
        except Exception:
            logger.exception("Dashboard render failed; using summary line")
            self._summary_only = True
            self._draw_summary(width)

    def _set_dashboard_visible(self, visible: bool) -> None:
        display = "block" if visible else "none"
        self.query_one("#gauge", Static).styles.display = display
        self.query_one("#body", Horizontal).styles.display = display
        self.query_one("#summary", Static).styles.display = (
            "none" if visible else "block"
        )

    def _draw_summary(self, width: int) -> None:
        try:
            self._set_dashboard_visible(False)
            summary = self.query_one("#summary", Static)
        except Exception:
            return
        summary.update(summary_line(self._state.latest, max(1, width)))

    def _draw_dashboard(self) -> None:
        self._set_dashboard_visible(True)
        state = self._state
        latest = state.latest
        gauge = self.query_one("#gauge", Static)
        gauge.border_title = gauge_title(latest)
        gauge.update(render_gauge(latest, max(1, gauge.content_size.width)))
        for tile_id, (title, value) in zip(TILE_IDS, tiles(latest)):
            tile = self.query_one(f"#{tile_id}", Static)
            tile.border_title = title
            tile.update(value)
        fps = self.query_one("#fps_spark", Static)
        fps.border_title = fps_title(state)
        fps.update(render_fps_sparkline(state, fps.content_size.width))
        speed = self.query_one("#speed_spark", Static)
        speed.border_title = speed_title(state)
        speed.update(render_speed_sparkline(state, speed.content_size.width))
        chart = self.query_one("#bitrate_chart", Static)
        chart.border_title = bitrate_title(state)
        chart.update(
            render_bitrate_chart(
                state, chart.content_size.width, chart.content_size.height
            )
        )

    def _refresh_status_bar(self) -> None:
        try:
            self.query_one("#status_bar", StatusBar).refresh()
        except Exception:
            return

    # --- Actions ---
    def action_quit_or_cancel(self) -> None:
        if self._live_run is not None and not self._finished:
            logger.info("Cancel requested from TUI")
            self.show_message("Cancelling transcode...", level="warn")
            self._live_run.cancel()
            return
        logger.info("TUI exit requested")
        if self._player is not None:
            self._player.stop()
        self.exit()

    def action_show_stats(self) -> None:
        if not self._finished:
            self.show_message("Statistics are available once the run ends")
            return
        if isinstance(self.screen, StatsScreen):
            return
        self.push_screen(StatsScreen(self.profile, self._history()))

    def action_dump_threads(self) -> None:
        self.show_message("Dumping threads")
        logger.info("Manual thread dump requested")
        dump_threads("manual dump")


def run_tui(app: ProgressApp) -> None:
    """Run the dashboard with the console log handler quieted."""
    logger.info("TUI start")
    try:
        set_console_level(logging.WARNING)
    except Exception:
        logger.exception("Failed to set console log level for TUI")
    try:
        app.run()
    finally:
        set_console_level(logging.INFO)
    logger.info("TUI exit")
