"""Upstream event source built on the watchdog library."""

import errno
import logging
import os
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Optional, Set

from watchdog.observers import Observer
from watchdog.events import (
    FileSystemEventHandler,
    DirModifiedEvent,
)

from .exceptions import NotifierClosedError, WatchError, WatchLimitError
from .models import EventKind, FileInfo, RawEvent

logger = logging.getLogger(__name__)

# errno values meaning the OS has no room for another watch
LIMIT_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOSPC})

def stat_info(path: Path) -> Optional[FileInfo]:
    """
    Inspect a path for event metadata.

    Args:
        path: Path to inspect

    Returns:
        FileInfo, or None if the path is gone or unreadable
    """
    try:
        return FileInfo.from_stat(os.stat(path))
    except FileNotFoundError as e:
        logger.debug(f"stat skipped: {e}")
    except OSError as e:
        logger.warning(f"stat failed: {e}")
    return None

def watch_error(path: Path, exc: OSError) -> WatchError:
    """Translate an OSError from watch registration into a WatchError."""
    if exc.errno in LIMIT_ERRNOS:
        return WatchLimitError(f"watch limit reached at {path}: {exc}", path, exc.errno)
    return WatchError(f"cannot watch {path}: {exc}", path, exc.errno)

class Notifier:
    """
    Base event source: a queue of RawEvent plus a close signal.

    Subclasses register directory watches with an OS mechanism and
    publish events as they arrive.
    """

    def __init__(self):
        self._queue: "queue.Queue[RawEvent]" = queue.Queue()
        self._closed = threading.Event()

    def publish(self, event: RawEvent) -> None:
        """Hand an event to the consumer."""
        if self._closed.is_set():
            return
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[RawEvent]:
        """
        Take the next event.

        Args:
            timeout: Seconds to wait; None blocks

        Returns:
            The next event, or None if nothing arrived in time

        Raises:
            NotifierClosedError: If the stream is closed and drained
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            if self._closed.is_set() or not self.is_alive():
                raise NotifierClosedError("notifier event stream closed")
            return None

    def add_watch(self, path: Path) -> None:
        """
        Register a directory watch.

        Raises:
            WatchError: If the watch cannot be established
            WatchLimitError: If the OS watch limit is exhausted
        """
        raise NotImplementedError

    def remove_watch(self, path: Path) -> None:
        """Drop a directory watch whose directory was deleted or moved away."""
        raise NotImplementedError

    def is_alive(self) -> bool:
        return True

    def start(self) -> None:
        pass

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

class FSEventHandler(FileSystemEventHandler):
    """Handler that converts watchdog events to RawEvent."""

    def __init__(
        self,
        callback: Callable[[RawEvent], None],
        is_watched: Callable[[Path], bool] = lambda path: False,
    ):
        super().__init__()
        self.callback = callback
        self.is_watched = is_watched

    def _emit(self, path, kinds: EventKind, timestamp: float) -> None:
        """Emit a RawEvent to the callback."""
        path = Path(os.fsdecode(path))
        raw_event = RawEvent(
            path=path,
            kinds=kinds,
            timestamp=timestamp,
            info=stat_info(path),
        )
        self.callback(raw_event)

    def on_created(self, event):
        self._emit(event.src_path, EventKind.CREATE, time.time())

    def on_deleted(self, event):
        self._emit(event.src_path, EventKind.DELETE, time.time())

    def on_modified(self, event):
        now = time.time()
        # watchdog reports the parent of every touched file as modified
        if isinstance(event, DirModifiedEvent) and self.is_watched(Path(os.fsdecode(event.src_path))):
            return
        self._emit(event.src_path, EventKind.MODIFY, now)

    def on_moved(self, event):
        now = time.time()
        self._emit(event.src_path, EventKind.RENAME, now)
        self._emit(event.dest_path, EventKind.CREATE, now)


class WatchdogNotifier(Notifier):
    """
    Watches directories with a single watchdog observer.

    In recursive mode each root is scheduled once and watchdog follows
    the tree itself, adding watches for new subdirectories. Directories
    below a scheduled root are only recorded. Otherwise every directory
    gets its own non-recursive watch.
    """

    def __init__(self, recursive: bool = False):
        super().__init__()
        self.recursive = recursive
        self._observer = Observer()
        self._scheduled: Dict[Path, object] = {}
        self._watches: Set[Path] = set()
        self._lock = threading.Lock()
        self._handler = FSEventHandler(self.publish, self._covers)
        self._started = False

    def start(self) -> None:
        """Start the observer thread."""
        with self._lock:
            if self._started:
                return
            self._observer.start()
            self._started = True

    def _root_for(self, path: Path) -> Optional[Path]:
        """Scheduled recursive root covering path, if any. Caller holds the lock."""
        if not self.recursive:
            return None
        for root in self._scheduled:
            if root == path or root in path.parents:
                return root
        return None

    def _covers(self, path: Path) -> bool:
        with self._lock:
            return path in self._watches or self._root_for(path) is not None

    def add_watch(self, path: Path) -> None:
        path = Path(path)
        with self._lock:
            if path in self._watches:
                return
            if self._root_for(path) is not None:
                self._watches.add(path)
                logger.debug(f"Watching {path} (covered)")
                return
        # Never hold self._lock across schedule(): the observer dispatches
        # to the handler under its own lock.
        try:
            watch = self._observer.schedule(self._handler, str(path), recursive=self.recursive)
        except OSError as e:
            raise watch_error(path, e) from e
        with self._lock:
            self._scheduled[path] = watch
            self._watches.add(path)
        logger.debug(f"Watching {path}")

    def remove_watch(self, path: Path) -> None:
        path = Path(path)
        with self._lock:
            self._watches.discard(path)
            watch = self._scheduled.pop(path, None)
        if watch is None:
            return
        try:
            self._observer.unschedule(watch)
        except KeyError:
            # emitter already gone along with its directory
            logger.debug(f"No emitter left for {path}")
        logger.debug(f"Stopped watching {path}")

    def is_watching(self, path: Path) -> bool:
        with self._lock:
            return Path(path) in self._watches

    @property
    def scheduled(self) -> FrozenSet[Path]:
        """Directories holding their own observer watch."""
        with self._lock:
            return frozenset(self._scheduled)

    def is_alive(self) -> bool:
        if not self._started:
            return True
        return self._observer.is_alive()

    def close(self) -> None:
        """Stop the observer and release all watches."""
        super().close()
        with self._lock:
            if not self._started:
                return
            self._started = False
            self._scheduled.clear()
            self._watches.clear()
        self._observer.stop()
        self._observer.join(timeout=5.0)

    def __len__(self) -> int:
        """Return the number of watched directories."""
        with self._lock:
            return len(self._watches)
