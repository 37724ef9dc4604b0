"""Main watcher pipeline orchestrator."""

import logging
import threading
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, TextIO

from .config import WatcherConfig
from .event_processor import BatchAccumulator, GroupingStreamer, PathDebouncer
from .exceptions import (
    NotifierClosedError,
    PipelineAlreadyRunningError,
    WatcherError,
    WatchLimitError,
)
from .expander import WatchExpander
from .filters import PathFilter, is_reportable
from .fs_watcher import Notifier, WatchdogNotifier
from .models import RawEvent
from .reporter import Dispatcher, Reporter, run_command
from .watch_set import WatchSet

logger = logging.getLogger(__name__)


class WatcherPipeline:
    """
    Orchestrates the consolidation pipeline.

    notifier -> path filter -> watch expander -> per-path debouncer ->
    batch accumulator (or grouping streamer) -> dispatcher. In raw mode
    filtered events go straight to the dispatcher.
    """

    def __init__(
        self,
        directories: Optional[Iterable[Path]] = None,
        config: Optional[WatcherConfig] = None,
        notifier: Optional[Notifier] = None,
        out: Optional[TextIO] = None,
        runner=run_command,
    ):
        """
        Initialize the pipeline.

        Args:
            directories: Directories to watch from the start
            config: Watcher configuration
            notifier: Upstream event source (defaults to watchdog)
            out: Report stream (defaults to stdout)
            runner: Function used to run the configured command
        """
        self.config = config or WatcherConfig()
        self.directories: List[Path] = [Path(d) for d in directories or []]
        if notifier is None:
            notifier = WatchdogNotifier(recursive=self.config.subdirs)
        self.notifier = notifier

        self._filter = PathFilter(self.config)
        self._watches = WatchSet()
        self._expander = WatchExpander(self.notifier, self.config, self._watches)
        self._dispatcher = Dispatcher(Reporter(out, self.config), self.config, runner)

        if self.config.raw:
            self._stage = None
        elif self.config.group:
            self._stage = GroupingStreamer(self.config, self._dispatcher.submit_grouped)
        else:
            self._stage = BatchAccumulator(self.config, self._dispatcher.submit_batch)
        self._debouncer = PathDebouncer(
            self.config,
            self._stage.submit if self._stage is not None else None,
        )

        self._running = False
        self._error: Optional[WatcherError] = None
        self._stop_event = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()
        self._ingest_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _startup(self) -> None:
        with self._lock:
            if self._running:
                raise PipelineAlreadyRunningError("Pipeline is already running")
            self._running = True
            self._error = None
            self._stop_event.clear()
            self._stopped.clear()

        self.notifier.start()
        try:
            # parents first, so a recursive root covers the directories below it
            for directory in sorted(self.directories, key=lambda p: len(p.parts)):
                logger.debug(f"Watching {directory}")
                self._expander.register(directory)
        except WatchLimitError:
            with self._lock:
                self._running = False
            self.notifier.close()
            self._stopped.set()
            raise
        logger.debug("All directory watches established")

        self._dispatcher.start()
        if self._stage is not None:
            self._stage.start()
        self._ingest_thread = threading.Thread(target=self._ingest_loop, name="ingest", daemon=True)
        self._ingest_thread.start()

    def start(self) -> None:
        """
        Run the pipeline (blocking) until stop() or a fatal error.

        Raises:
            PipelineAlreadyRunningError: If already running
            WatchLimitError: If the watch limit is exhausted
            NotifierClosedError: If the event source closed unexpectedly
        """
        self._startup()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self._shutdown()

        if self._error is not None:
            raise self._error

    def start_async(self) -> None:
        """
        Start the pipeline in background threads and return.

        Raises:
            PipelineAlreadyRunningError: If already running
            WatchLimitError: If the watch limit is exhausted
        """
        self._startup()

    def stop(self) -> None:
        """Stop the pipeline and wait for every worker to finish."""
        self._stop_event.set()
        self._shutdown()

    def request_stop(self) -> None:
        """
        Ask a blocking start() to shut down and return.

        Safe to call from a signal handler.
        """
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the pipeline is asked to stop.

        Returns:
            True if a stop was requested within the timeout
        """
        return self._stop_event.wait(timeout)

    def _fail(self, error: WatcherError) -> None:
        """Record a fatal error and shut down from a separate thread."""
        with self._lock:
            if self._error is None:
                self._error = error
        logger.error(f"Fatal: {error}")
        self._stop_event.set()
        threading.Thread(target=self._shutdown, name="shutdown", daemon=True).start()

    def _shutdown(self) -> None:
        """Internal shutdown procedure."""
        with self._lock:
            if not self._running:
                first = False
            else:
                self._running = False
                first = True

        if not first:
            self._stopped.wait(timeout=self.config.shutdown_timeout * 4)
            return

        timeout = self.config.shutdown_timeout
        self._stop_event.set()

        thread = self._ingest_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._ingest_thread = None

        self.notifier.close()
        self._expander.close()

        count = self._debouncer.stop()
        logger.debug(f"Stopped {count} debounce unit(s)")

        if self._stage is not None:
            self._stage.close(timeout)
        self._dispatcher.close(timeout)

        self._stopped.set()
        logger.debug("Pipeline stopped")

    def _ingest_loop(self) -> None:
        """Worker loop that reads events from the notifier."""
        while not self._stop_event.is_set():
            try:
                event = self.notifier.get(timeout=self.config.poll_interval)
            except NotifierClosedError as e:
                if not self._stop_event.is_set():
                    self._fail(NotifierClosedError(f"notifier event stream closed unexpectedly: {e}"))
                return

            if event is None:
                continue

            try:
                self._ingest(event)
            except WatchLimitError as e:
                self._fail(e)
                return

    def _ingest(self, event: RawEvent) -> None:
        logger.debug(f"from notifier: {event.path} {event.kinds}")

        event = self._filter.apply(event)
        if event is None:
            return

        self._expander.forget(event)
        if self.config.subdirs:
            self._expander.expand(event)

        if self.config.raw:
            self._dispatcher.submit_raw(event)
            return

        if not is_reportable(event.kinds):
            logger.debug(f"Not reporting {event.kinds}: {event.path}")
            return

        self._debouncer.dispatch(event)

    def get_watches(self) -> FrozenSet[Path]:
        """Directories currently watched."""
        return self._watches.get_watches()

    @property
    def is_running(self) -> bool:
        """Check if the pipeline is running."""
        return self._running

    @property
    def error(self) -> Optional[WatcherError]:
        """The fatal error that stopped the pipeline, if any."""
        return self._error

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def close(self) -> None:
        """Stop the pipeline and release all resources."""
        self.stop()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
