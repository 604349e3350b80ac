"""Command-line front end for yams-sync."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from yams_sync.config import Settings
from yams_sync.exceptions import YamsError
from yams_sync.main import configure_logging, open_engine
from yams_sync.services.datetime_service import format_layout

if TYPE_CHECKING:
    from yams_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_THREADS = 5


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {number}")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yams-sync",
        description="Synchronize local images with a YAMS bucket",
    )
    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--list", action="store_true", help="List objects in the bucket")
    actions.add_argument("--delete", metavar="NAME", help="Force-delete one object")
    actions.add_argument(
        "--delete-all", action="store_true", help="Force-delete every object in the bucket"
    )
    actions.add_argument(
        "--reset-watermark",
        action="store_true",
        help="Drop the newest watermark so the next run starts from the previous one",
    )
    actions.add_argument("--history", action="store_true", help="Show recorded watermarks")
    parser.add_argument(
        "--threads",
        type=_positive_int,
        default=DEFAULT_THREADS,
        help=f"Concurrent workers for sync and --delete-all (default: {DEFAULT_THREADS})",
    )

    subparsers = parser.add_subparsers(dest="command")
    sync = subparsers.add_parser("sync", help="Upload new and previously failed images")
    sync.add_argument("image_list", type=Path, help="Image list file ('<timestamp> <name>' lines)")
    sync.add_argument(
        "--limit",
        type=_positive_int,
        default=DEFAULT_LIMIT,
        help=f"Maximum images dispatched by the forward pass (default: {DEFAULT_LIMIT})",
    )
    sync.add_argument(
        "--threads",
        type=_positive_int,
        default=argparse.SUPPRESS,
        help=f"Concurrent upload workers (default: {DEFAULT_THREADS})",
    )
    sync.add_argument(
        "--tolerance",
        type=_non_negative_int,
        default=None,
        help="Maximum error counter still retried (default: ERRORS_MAX_RETRIES_PER_ERROR)",
    )
    return parser


def _selected_action(args: argparse.Namespace) -> str | None:
    if args.command == "sync":
        return "sync"
    if args.list:
        return "list"
    if args.delete is not None:
        return "delete"
    if args.delete_all:
        return "delete-all"
    if args.reset_watermark:
        return "reset-watermark"
    if args.history:
        return "history"
    return None


async def _dispatch(
    action: str, args: argparse.Namespace, settings: Settings, engine: SyncEngine
) -> None:
    if action == "sync":
        tolerance = (
            settings.errors_max_retries_per_error if args.tolerance is None else args.tolerance
        )
        result = await engine.run(
            args.image_list, limit=args.limit, threads=args.threads, tolerance=tolerance
        )
        print(result.retry.summary())
        print(result.forward.summary())
        if result.watermark is not None:
            print(f"Watermark: {format_layout(result.watermark, settings.images_date_layout)}")
    elif action == "list":
        objects = await engine.list_remote()
        for obj in objects:
            print(f"{obj.id}\t{obj.md5}\t{obj.size}")
        print(f"{len(objects)} object(s)")
    elif action == "delete":
        await engine.delete(args.delete)
        print(f"Deleted {args.delete}")
    elif action == "delete-all":
        deleted = await engine.delete_all(args.threads)
        print(f"Deleted {deleted} object(s)")
    elif action == "reset-watermark":
        removed = await engine.reset_watermark()
        if removed is None:
            print("No watermark recorded")
        else:
            print(f"Removed watermark {format_layout(removed, settings.images_date_layout)}")
    elif action == "history":
        for mark in await engine.watermark_history():
            print(mark)


async def _run(action: str, args: argparse.Namespace, settings: Settings) -> None:
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Not available on every event loop implementation.
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, shutdown.set)
    try:
        async with open_engine(settings, shutdown=shutdown) as engine:
            await _dispatch(action, args, settings, engine)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    action = _selected_action(args)
    if action is None:
        parser.print_usage(sys.stderr)
        print(
            "Error: choose a command: sync, --list, --delete, --delete-all, "
            "--reset-watermark or --history",
            file=sys.stderr,
        )
        return 2
    flag_given = (
        args.list
        or args.delete is not None
        or args.delete_all
        or args.reset_watermark
        or args.history
    )
    if args.command == "sync" and flag_given:
        parser.print_usage(sys.stderr)
        print("Error: sync cannot be combined with other commands", file=sys.stderr)
        return 2

    try:
        settings = Settings()
    except (ValueError, OSError) as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    configure_logging(settings.debug)

    try:
        asyncio.run(_run(action, args, settings))
    except (YamsError, OSError, ValueError, SQLAlchemyError) as exc:
        logger.error("yams-sync %s failed: %s", action, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
