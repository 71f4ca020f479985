"""Command-line interface for ffprog."""

from __future__ import annotations

import argparse
import sys
import logging
import threading
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple
from types import TracebackType

from rich.console import Console

from ffprog.config import AppConfig, load_config
from ffprog.errors import (
    EXIT_CANCELLED,
    EXIT_OK,
    EXIT_RECORD,
    EXIT_UI_UNAVAILABLE,
    FfprogError,
    ProcessError,
)
from ffprog.hangwatch import dump_threads, enable_faulthandler
from ffprog.logging_setup import init_logging
from ffprog.plain import run_plain_live, run_plain_replay, stats_table
from ffprog.probe import probe_source
from ffprog.record_store import STATS_SUFFIX, load, stats_path_for
from ffprog.session import LiveRun, RunContext, RunOutcome, RunResult
from ffprog.transcoder import TranscodeProcess
from ffprog.ui.driver import replay_updates

logger = logging.getLogger(__name__)

PASSTHROUGH_MARKER = "--"


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ffprog",
        description="Live progress dashboard and statistics for ffmpeg transcodes",
        epilog="Arguments after '--' are passed to ffmpeg unchanged.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run ffmpeg and show its progress")
    run.add_argument(
        "-i",
        "--input",
        required=True,
        type=Path,
        help="Same input media file that is used in the ffmpeg arguments",
    )
    run.add_argument(
        "-y",
        "--overwrite",
        action="store_true",
        help="Overwrite the output file if it already exists",
    )
    run.add_argument(
        "--no-save-stats",
        action="store_true",
        help="Do not write <input-stem>.stats after the run",
    )
    _add_display_arguments(run)

    replay = commands.add_parser("replay", help="Replay a saved stats record")
    replay.add_argument(
        "record",
        type=Path,
        help="Stats record, or the input file it was recorded for",
    )
    replay.add_argument(
        "--speed",
        type=float,
        default=None,
        help="Playback speed multiplier (default from config, 1.0)",
    )
    _add_display_arguments(replay)
    return parser


def _add_display_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--show-stats",
        action="store_true",
        help="Show the statistics screen once the run ends",
    )
    parser.add_argument(
        "--plain",
        action="store_true",
        help="Single summary line instead of the full-screen dashboard",
    )


def split_passthrough(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split at the first ``--``; everything after it belongs to ffmpeg."""
    args = list(argv)
    if PASSTHROUGH_MARKER not in args:
        return args, []
    index = args.index(PASSTHROUGH_MARKER)
    return args[:index], args[index + 1 :]


def resolve_record_path(identifier: Path) -> Path:
    if identifier.suffix == STATS_SUFFIX:
        return identifier
    return stats_path_for(identifier)


def _fail(message: str) -> None:
    print(f"ffprog: {message}", file=sys.stderr)


def _present_live(
    live_run: LiveRun, args: argparse.Namespace, config: AppConfig
) -> tuple[int, bool]:
    """Drive a renderer until the run ends; return (exit code, plain used)."""
    show_stats = args.show_stats or config.show_stats
    if not args.plain:
        try:
            from ffprog.tui import ProgressApp, run_tui
        except RuntimeError as exc:
            logger.warning("Falling back to plain output: %s", exc)
        else:
            app = ProgressApp(
                live_run.context.profile,
                live_run=live_run,
                show_stats=show_stats,
                stall_seconds=config.stall_seconds,
            )
            try:
                run_tui(app)
            except Exception:
                logger.exception("TUI failed")
                live_run.cancel()
                return EXIT_UI_UNAVAILABLE, False
            if not live_run.is_done:
                live_run.cancel()
            return EXIT_OK, False
    run_plain_live(live_run)
    return EXIT_OK, True


def _report_run(result: RunResult, *, ui_code: int) -> int:
    if result.save_error is not None:
        _fail(f"could not save stats: {result.save_error.message}")
    elif result.saved:
        print(f"Stats saved to {result.record_path}", file=sys.stderr)
    if result.outcome is RunOutcome.FAILED and result.error is not None:
        _fail(result.error.message)
        if isinstance(result.error, ProcessError) and result.error.stderr_tail:
            logger.error("ffmpeg stderr:\n%s", result.error.stderr_tail)
        return result.error.exit_code
    if ui_code != EXIT_OK:
        _fail("dashboard could not be shown; the transcode was stopped")
        return ui_code
    if result.outcome is RunOutcome.CANCELLED:
        _fail("transcode cancelled")
        return EXIT_CANCELLED
    if result.save_error is not None:
        return EXIT_RECORD
    return EXIT_OK


def _command_run(
    args: argparse.Namespace, passthrough: list[str], config: AppConfig
) -> int:
    profile = probe_source(args.input, config.ffprobe_binary)
    context = RunContext(profile, queue_size=config.queue_size)
    process = TranscodeProcess(
        passthrough,
        overwrite=args.overwrite,
        binary=config.ffmpeg_binary,
        stats_period=config.stats_period,
    )
    live_run = LiveRun(
        context,
        process,
        record_path=stats_path_for(args.input),
        save_stats=config.save_stats and not args.no_save_stats,
    )
    ui_code = EXIT_OK
    plain_used = False
    try:
        process.start()
    except ProcessError as exc:
        live_run.abort(exc)
    else:
        live_run.start()
        try:
            ui_code, plain_used = _present_live(live_run, args, config)
        except KeyboardInterrupt:
            live_run.cancel()
    result = live_run.finalize()
    show_stats = args.show_stats or config.show_stats
    if plain_used and show_stats and result.outcome is RunOutcome.COMPLETED:
        Console().print(stats_table(profile, result.record.history))
    return _report_run(result, ui_code=ui_code)


def _command_replay(args: argparse.Namespace, config: AppConfig) -> int:
    speed = args.speed if args.speed is not None else config.replay_speed
    record = load(resolve_record_path(args.record))
    updates = replay_updates(record)
    show_stats = args.show_stats or config.show_stats
    if not args.plain:
        try:
            from ffprog.tui import ProgressApp, run_tui
        except RuntimeError as exc:
            logger.warning("Falling back to plain output: %s", exc)
        else:
            app = ProgressApp(
                record.source_profile,
                replay=updates,
                replay_speed=speed,
                show_stats=show_stats,
            )
            try:
                run_tui(app)
            except Exception:
                logger.exception("TUI failed")
                _fail("dashboard could not be shown")
                return EXIT_UI_UNAVAILABLE
            return EXIT_OK
    run_plain_replay(updates, speed=speed)
    if show_stats:
        Console().print(stats_table(record.source_profile, record.history))
    return EXIT_OK


def main(argv: Optional[Iterable[str]] = None) -> int:
    """Entry point for the CLI."""
    own, passthrough = split_passthrough(
        list(argv) if argv is not None else sys.argv[1:]
    )
    parser = build_parser()
    args = parser.parse_args(own)
    if args.command == "run" and not passthrough:
        parser.error("run needs ffmpeg arguments after '--'")
    if args.command == "replay":
        if passthrough:
            parser.error("replay does not take ffmpeg arguments")
        if args.speed is not None and args.speed <= 0:
            parser.error("--speed must be positive")

    log_path = init_logging(verbose=args.verbose)
    enable_faulthandler(log_path)
    logger.info("App start command=%s", args.command)

    def excepthook(exc_type, exc, tb) -> None:
        logger.exception("Uncaught exception", exc_info=(exc_type, exc, tb))
        dump_threads("uncaught exception")

    sys.excepthook = excepthook

    def thread_hook(args: threading.ExceptHookArgs) -> None:
        exc_value = args.exc_value or RuntimeError("unknown")
        exc_info: Tuple[type[BaseException], BaseException, Optional[TracebackType]] = (
            args.exc_type,
            exc_value,
            args.exc_traceback,
        )
        thread_name = args.thread.name if args.thread else "thread"
        logger.exception("Thread exception in %s", thread_name, exc_info=exc_info)
        dump_threads(f"thread exception in {thread_name}")

    threading.excepthook = thread_hook

    config = load_config()
    try:
        if args.command == "run":
            exit_code = _command_run(args, passthrough, config)
        else:
            exit_code = _command_replay(args, config)
    except FfprogError as exc:
        logger.error("%s: %s", type(exc).__name__, exc.message)
        _fail(exc.message)
        exit_code = exc.exit_code
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = EXIT_CANCELLED
    logger.info("App exit code=%s", exit_code)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
