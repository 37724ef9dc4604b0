"""Event consolidation: per-path debouncing, batch accumulation and grouping."""

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import WatcherConfig
from .models import Batch, GroupedEvent, RawEvent

logger = logging.getLogger(__name__)

_STOP = object()


class DebounceUnit:
    """
    Quiescence detector for a single path.

    Runs its own worker thread fed by its own inbox. Each event re-arms
    a timer for ``latency`` seconds; when the timer runs out the latest
    event (kinds OR-ed over the burst) is emitted as settled.
    """

    def __init__(
        self,
        path: Path,
        latency: float,
        emit: Callable[[RawEvent], None],
    ):
        """
        Initialize the unit.

        Args:
            path: The path this unit debounces
            latency: Quiet period in seconds
            emit: Callback receiving each settled event
        """
        self.path = path
        self.latency = latency
        self._emit = emit
        self._inbox: "queue.Queue[object]" = queue.Queue()
        self._pending: Optional[RawEvent] = None
        self._deadline: Optional[float] = None
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"debounce:{path}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def put(self, event: RawEvent) -> None:
        """Feed an event for this path."""
        self._inbox.put(event)

    @property
    def is_active(self) -> bool:
        """True while a timer is armed."""
        return self._deadline is not None

    def stop(self) -> None:
        """Ask the worker to terminate; nothing is emitted afterwards."""
        self._stopped.set()
        self._inbox.put(_STOP)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the worker to acknowledge termination.

        Returns:
            True if the worker has exited
        """
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        while True:
            timeout = None
            if self._deadline is not None:
                timeout = max(0.0, self._deadline - time.monotonic())
            try:
                item = self._inbox.get(timeout=timeout)
            except queue.Empty:
                self._settle()
                continue
            if item is _STOP:
                return
            if self._pending is None:
                self._pending = item
            else:
                self._pending = self._pending.merge(item)
            self._deadline = time.monotonic() + self.latency

    def _settle(self) -> None:
        event, self._pending, self._deadline = self._pending, None, None
        if event is None or self._stopped.is_set():
            return
        self._emit(event)


class PathDebouncer:
    """
    Fans raw events out to one DebounceUnit per distinct path.

    Units are created lazily on the first event for a path and live
    until stop(). Only the pipeline's ingestion loop calls dispatch().
    """

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        emit: Optional[Callable[[RawEvent], None]] = None,
    ):
        """
        Initialize the debouncer.

        Args:
            config: Watcher configuration (latency)
            emit: Callback receiving settled events
        """
        self.config = config or WatcherConfig()
        self.emit = emit if emit is not None else (lambda event: None)
        self._units: Dict[Path, DebounceUnit] = {}
        self._stopping = threading.Event()

    def dispatch(self, event: RawEvent) -> None:
        """
        Route an event to the unit for its path.

        With zero latency the event is settled immediately.

        Args:
            event: A filtered, reportable raw event
        """
        if self._stopping.is_set():
            return
        if self.config.latency == 0:
            self.emit(event)
            return

        unit = self._units.get(event.path)
        if unit is None:
            logger.debug(f"New debounce unit for {event.path}")
            unit = DebounceUnit(event.path, self.config.latency, self.emit)
            self._units[event.path] = unit
            unit.start()
        unit.put(event)

    def stop(self) -> int:
        """
        Terminate every unit and wait for each one to confirm.

        Returns:
            Number of units stopped
        """
        self._stopping.set()
        units = list(self._units.values())

        for unit in units:
            unit.stop()

        for unit in units:
            if not unit.join(timeout=self.config.shutdown_timeout):
                logger.warning(f"Debounce unit for {unit.path} did not stop")

        return len(units)

    def paths(self) -> List[Path]:
        """Paths that have a debounce unit."""
        return list(self._units.keys())

    def __len__(self) -> int:
        """Return the number of debounce units."""
        return len(self._units)


class _WindowWorker:
    """
    Single worker thread with a shared, re-armable window timer.

    Subclasses implement _on_event, _on_expire and _on_close; all three
    run on the worker thread only.
    """

    thread_name = "window"

    def __init__(self, config: Optional[WatcherConfig] = None):
        self.config = config or WatcherConfig()
        self.latency = self.config.latency
        self._inbox: "queue.Queue[object]" = queue.Queue()
        self._deadline: Optional[float] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=self.thread_name, daemon=True)
        self._thread.start()

    def submit(self, event: RawEvent) -> None:
        """Hand a settled event to the worker."""
        self._inbox.put(event)

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Close the input and wait for the worker to finish.

        Args:
            timeout: Seconds to wait for the worker thread
        """
        self._inbox.put(_STOP)
        if self._thread is not None:
            self._thread.join(timeout)

    def _arm(self) -> None:
        self._deadline = time.monotonic() + self.latency

    def _run(self) -> None:
        while True:
            timeout = None
            if self._deadline is not None:
                timeout = max(0.0, self._deadline - time.monotonic())
            try:
                item = self._inbox.get(timeout=timeout)
            except queue.Empty:
                self._deadline = None
                self._on_expire()
                continue
            if item is _STOP:
                self._on_close()
                return
            self._on_event(item)

    def _on_event(self, event: RawEvent) -> None:
        raise NotImplementedError

    def _on_expire(self) -> None:
        raise NotImplementedError

    def _on_close(self) -> None:
        raise NotImplementedError


class BatchAccumulator(_WindowWorker):
    """
    Collects settled events from all paths into batches.

    Every settled event re-arms one shared window of ``latency``
    seconds. When the window runs out, the pending paths are flushed as
    one Batch in first-arrival order with duplicates suppressed. A
    partial batch pending at shutdown is discarded.
    """

    thread_name = "accumulator"

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        on_batch: Optional[Callable[[Batch], None]] = None,
    ):
        """
        Initialize the accumulator.

        Args:
            config: Watcher configuration (latency)
            on_batch: Callback when a batch is flushed
        """
        super().__init__(config)
        self.on_batch = on_batch if on_batch is not None else (lambda batch: None)
        # dict keeps first-insertion order and doubles as the membership set
        self._pending: Dict[Path, RawEvent] = {}

    def _on_event(self, event: RawEvent) -> None:
        if self.latency == 0:
            self.on_batch(Batch(events=[event]))
            return

        existing = self._pending.get(event.path)
        if existing is None:
            self._pending[event.path] = event
        else:
            self._pending[event.path] = existing.merge(event)
        self._arm()

    def _on_expire(self) -> None:
        if not self._pending:
            return
        batch = Batch(events=list(self._pending.values()))
        self._pending.clear()
        logger.debug(f"Flushing batch of {len(batch)} path(s)")
        self.on_batch(batch)

    def _on_close(self) -> None:
        if self._pending:
            logger.debug(f"Discarding partial batch of {len(self._pending)} path(s)")
            self._pending.clear()


class GroupingStreamer(_WindowWorker):
    """
    Streams settled events while marking batch boundaries.

    Holds back only the most recent event: a new event releases the
    held one unflagged, and window expiry releases it flagged as the
    last of its batch.
    """

    thread_name = "grouping"

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        on_event: Optional[Callable[[GroupedEvent], None]] = None,
    ):
        """
        Initialize the streamer.

        Args:
            config: Watcher configuration (latency)
            on_event: Callback for each streamed event
        """
        super().__init__(config)
        self.on_event = on_event if on_event is not None else (lambda item: None)
        self._prior: Optional[RawEvent] = None

    def _on_event(self, event: RawEvent) -> None:
        if self.latency == 0:
            self.on_event(GroupedEvent(event, last=True))
            return

        if self._prior is not None:
            self.on_event(GroupedEvent(self._prior, last=False))
        self._prior = event
        self._arm()

    def _on_expire(self) -> None:
        prior, self._prior = self._prior, None
        if prior is not None:
            self.on_event(GroupedEvent(prior, last=True))

    def _on_close(self) -> None:
        if self._prior is not None:
            logger.debug(f"Discarding held event for {self._prior.path}")
            self._prior = None
