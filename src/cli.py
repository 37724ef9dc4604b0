#!/usr/bin/env python3
"""
CLI for watching directories and reporting settled changes.

Usage:
    python -m src.cli /path/to/dir
    python -m src.cli --latency 0.5 --subdirs --exclude '/\\.git/' /path/to/repo
    python -m src.cli --group --command "make -C build" /path/to/src
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from src.quiesce import (
    ConfigError,
    PathFilter,
    WatcherConfig,
    WatcherError,
    WatcherPipeline,
    collect_watch_dirs,
)


logger = logging.getLogger("cli")


def setup_logging(level: int = logging.WARNING, stamp: bool = True) -> None:
    """Configure the root logger for the CLI."""
    if stamp:
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    else:
        fmt = "[%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


class GracefulShutdown:
    """Stop the pipeline on SIGINT/SIGTERM."""

    def __init__(self, pipeline: WatcherPipeline):
        self.pipeline = pipeline
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.pipeline.request_stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quiesce",
        description="Report files in the given directories once they stop changing.",
    )
    parser.add_argument("directories", nargs="+", help="Directories to watch")
    parser.add_argument(
        "--latency",
        type=float,
        default=None,
        help="Seconds to wait for notifications to settle (default: 1.0)",
    )
    parser.add_argument("--exclude", default=None, help="Regular expression of paths to ignore")
    parser.add_argument("--subdirs", action="store_true", default=None, help="Watch subdirectories too")
    parser.add_argument("--long", dest="long_format", action="store_true", default=None,
                        help="Long format output (timestamp, kinds, size)")
    parser.add_argument("--group", action="store_true", default=None,
                        help="Stream paths as they settle, one line per batch")
    parser.add_argument("--raw", action="store_true", default=None,
                        help="Report every event without consolidation")
    parser.add_argument("--command", default=None, help="Command to run on each batch of changed files")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Log the command instead of running it")
    parser.add_argument("--nostamp", action="store_true", help="No datetime stamp for log output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log informational messages")
    parser.add_argument("--debug", action="store_true", help="Print debug output")
    return parser


def build_config(args: argparse.Namespace) -> WatcherConfig:
    """Merge environment defaults with command line options."""
    return WatcherConfig.from_env(
        latency=args.latency,
        exclude=args.exclude,
        subdirs=args.subdirs,
        long_format=args.long_format,
        group=args.group,
        raw=args.raw,
        command=args.command,
        dry_run=args.dry_run,
    )


def resolve_directories(directories: List[str]) -> List[Path]:
    """
    Resolve and validate the directories given on the command line.

    Raises:
        ConfigError: If a directory is missing or not a directory
    """
    resolved = []
    for directory in directories:
        path = Path(directory).resolve()
        if not path.exists():
            raise ConfigError(f"Path does not exist: {path}")
        if not path.is_dir():
            raise ConfigError(f"Path is not a directory: {path}")
        resolved.append(path)
    return resolved


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO if args.verbose else logging.WARNING
    setup_logging(level, stamp=not args.nostamp)

    try:
        config = build_config(args)
        roots = resolve_directories(args.directories)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    logger.debug(f"Command is {config.command!r}")

    directories = collect_watch_dirs(roots, PathFilter(config), recursive=config.subdirs)
    pipeline = WatcherPipeline(directories, config)
    GracefulShutdown(pipeline)

    logger.info(f"Watching {len(directories)} director{'y' if len(directories) == 1 else 'ies'}")
    try:
        pipeline.start()
    except WatcherError as e:
        logger.error(f"Fatal: {e}")
        return 1

    logger.info("Watcher stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
