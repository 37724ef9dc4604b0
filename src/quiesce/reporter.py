"""Report formatting and per-batch command dispatch."""

import logging
import queue
import shlex
import subprocess
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TextIO

from .config import WatcherConfig
from .exceptions import CommandError
from .models import Batch, GroupedEvent, RawEvent

logger = logging.getLogger(__name__)

_STOP = object()


def format_timestamp(timestamp: float, fmt: str = "%Y-%m-%d %H:%M:%S.%f") -> str:
    """
    Format a Unix timestamp in local time.

    A trailing ``%f`` is cut to milliseconds.
    """
    text = datetime.fromtimestamp(timestamp).strftime(fmt)
    if fmt.endswith("%f"):
        text = text[:-3]
    return text


@dataclass
class CommandResult:
    """
    Outcome of one external command run.

    Attributes:
        args: Full argument list that was run
        output: Combined stdout and stderr
        returncode: Exit status, or None if the command could not start
        error: Set when the command failed to start or exited non-zero
    """
    args: List[str]
    output: bytes = b""
    returncode: Optional[int] = None
    error: Optional[CommandError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_command(template: Sequence[str], paths: Sequence[Path]) -> CommandResult:
    """
    Run a command with paths appended as trailing arguments.

    Args:
        template: Command and leading arguments
        paths: Paths to append, in order

    Returns:
        CommandResult with the combined output
    """
    args = list(template) + [str(p) for p in paths]
    try:
        proc = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    except OSError as e:
        return CommandResult(args, error=CommandError(f"cannot run {args[0]}: {e}"))

    result = CommandResult(args, output=proc.stdout or b"", returncode=proc.returncode)
    if proc.returncode != 0:
        result.error = CommandError(f"{shlex.join(args)} exited with status {proc.returncode}")
    return result


class Reporter:
    """Writes batches, grouped events and raw events to a text stream."""

    def __init__(self, out: Optional[TextIO] = None, config: Optional[WatcherConfig] = None):
        self.out = out if out is not None else sys.stdout
        self.config = config or WatcherConfig()

    def _timestamp(self, timestamp: float) -> str:
        return format_timestamp(timestamp, self.config.timestamp_format)

    def format_batch(self, batch: Batch) -> str:
        """
        One report line for a batch, without the newline.

        Long format adds the flush time in front and the batch's event
        kinds at the end, plus the file size for a one-path batch.
        """
        fields = [str(p) for p in batch.paths]
        if self.config.long_format:
            fields.insert(0, self._timestamp(batch.flushed_at))
            fields.append(str(batch.kinds))
            if len(batch) == 1 and batch.events[0].info is not None:
                fields.append(str(batch.events[0].info.size))
        return "\t".join(fields)

    def format_raw(self, event: RawEvent) -> str:
        size = str(event.info.size) if event.info is not None else ""
        return "\t".join([self._timestamp(event.timestamp), str(event.path), str(event.kinds), size])

    def report_batch(self, batch: Batch) -> None:
        self._write(self.format_batch(batch) + "\n")

    def report_grouped(self, item: GroupedEvent) -> None:
        self._write(str(item.event.path) + ("\n" if item.last else "\t"))

    def end_line(self) -> None:
        """Terminate a grouped line cut short by shutdown."""
        self._write("\n")

    def report_raw(self, event: RawEvent) -> None:
        self._write(self.format_raw(event) + "\n")

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()


class Dispatcher:
    """
    Reports batches and runs the configured command for each one.

    Work is queued to a dedicated thread, so a slow or hung command
    holds up later reports but never the accumulator. Failed commands
    are logged and not retried.
    """

    def __init__(
        self,
        reporter: Reporter,
        config: Optional[WatcherConfig] = None,
        runner: Callable[[Sequence[str], Sequence[Path]], CommandResult] = run_command,
    ):
        """
        Initialize the dispatcher.

        Args:
            reporter: Where reports are written
            config: Watcher configuration (command, dry_run)
            runner: Function that runs the command
        """
        self.reporter = reporter
        self.config = config or WatcherConfig()
        self.runner = runner
        self.failures = 0
        self._group_paths: List[Path] = []
        self._inbox: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="dispatcher", daemon=True)
        self._thread.start()

    def submit_batch(self, batch: Batch) -> None:
        self._inbox.put(partial(self._handle_batch, batch))

    def submit_grouped(self, item: GroupedEvent) -> None:
        self._inbox.put(partial(self._handle_grouped, item))

    def submit_raw(self, event: RawEvent) -> None:
        self._inbox.put(partial(self._handle_raw, event))

    def close(self, timeout: Optional[float] = None) -> bool:
        """
        Finish queued work and stop the worker.

        Returns:
            True if the worker has exited
        """
        self._inbox.put(_STOP)
        if self._thread is None:
            return True
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Dispatcher still busy at shutdown")
            return False
        return True

    def _run(self) -> None:
        while True:
            work = self._inbox.get()
            if work is _STOP:
                self._end_partial_group()
                return
            try:
                work()
            except Exception as e:
                logger.error(f"Dispatch error: {e}")

    def _handle_batch(self, batch: Batch) -> None:
        self.reporter.report_batch(batch)
        self.run(batch.paths)

    def _handle_grouped(self, item: GroupedEvent) -> None:
        self.reporter.report_grouped(item)
        self._group_paths.append(item.event.path)
        if item.last:
            paths, self._group_paths = self._group_paths, []
            self.run(paths)

    def _end_partial_group(self) -> None:
        """Close a grouped line whose batch never completed; the command is not run."""
        if not self._group_paths:
            return
        logger.debug(f"Shutdown cut a group of {len(self._group_paths)} path(s) short")
        self._group_paths = []
        self.reporter.end_line()

    def _handle_raw(self, event: RawEvent) -> None:
        self.reporter.report_raw(event)
        self.run([event.path])

    def run(self, paths: Sequence[Path]) -> Optional[CommandResult]:
        """
        Run the configured command on paths.

        Returns:
            The result, or None if no command ran
        """
        if not self.config.command or not paths:
            return None

        if self.config.dry_run:
            args = list(self.config.command) + [str(p) for p in paths]
            logger.info(f"Would run: {shlex.join(args)}")
            return None

        result = self.runner(self.config.command, paths)
        output = result.output.decode(errors="replace").rstrip()
        if result.ok:
            logger.info(f"Ran: {shlex.join(result.args)}")
            if output:
                logger.info(output)
        else:
            self.failures += 1
            logger.error(f"Command failed: {result.error}")
            if output:
                logger.error(output)
        return result
