"""Registers watches on directories created while the watcher runs."""

import logging
import os
import stat
import threading
from pathlib import Path
from typing import Optional

from .config import WatcherConfig
from .exceptions import WatchError, WatchLimitError
from .fs_watcher import Notifier
from .models import EventKind, RawEvent
from .watch_set import WatchSet

logger = logging.getLogger(__name__)


class WatchExpander:
    """
    Sole owner of the watch set.

    All registrations go through here, from the pipeline's ingestion
    loop only. Once closed, no further watches are registered.
    """

    def __init__(
        self,
        notifier: Notifier,
        config: Optional[WatcherConfig] = None,
        watches: Optional[WatchSet] = None,
    ):
        self.notifier = notifier
        self.config = config or WatcherConfig()
        self.watches = watches if watches is not None else WatchSet()
        self._closed = threading.Event()

    def register(self, path: Path) -> bool:
        """
        Register a watch on a directory.

        Args:
            path: Directory to watch

        Returns:
            True if a new watch was registered, False if it already
            existed, the expander is closed, or registration failed

        Raises:
            WatchLimitError: If the notifier is out of watch resources
        """
        path = Path(path)
        if self._closed.is_set():
            logger.debug(f"Not watching {path}: shutting down")
            return False
        if path in self.watches:
            return False

        try:
            self.notifier.add_watch(path)
        except WatchLimitError as e:
            logger.error(f"Error: add watch {path}: {e}")
            raise
        except WatchError as e:
            logger.error(f"Error: add watch {path}: {e}")
            return False

        self.watches.add(path)
        logger.debug(f"Adding watch of {path}")
        return True

    def expand(self, event: RawEvent) -> bool:
        """
        Watch the path of a directory-creation event.

        Does nothing unless subdirectory tracking is enabled and the
        event includes CREATE.

        Args:
            event: A filtered raw event

        Returns:
            True if a new watch was registered

        Raises:
            WatchLimitError: If the notifier is out of watch resources
        """
        if not self.config.subdirs or EventKind.CREATE not in event.kinds:
            return False
        if not self._is_dir(event.path):
            return False
        return self.register(event.path)

    def forget(self, event: RawEvent) -> int:
        """
        Drop watches on a directory that was deleted or moved away.

        The kernel watch dies with its directory, so a directory
        recreated under the same name must be registered again. Watched
        directories below it are dropped too.

        Args:
            event: A filtered raw event

        Returns:
            Number of watches dropped
        """
        if not event.kinds & (EventKind.DELETE | EventKind.RENAME):
            return 0
        removed = self.watches.discard_tree(event.path)
        for path in removed:
            self.notifier.remove_watch(path)
            logger.debug(f"Removing watch of {path}")
        return len(removed)

    @staticmethod
    def _is_dir(path: Path) -> bool:
        try:
            return stat.S_ISDIR(os.stat(path).st_mode)
        except FileNotFoundError as e:
            # created and removed again before we got to look
            logger.debug(f"{e}")
        except OSError as e:
            logger.warning(f"{e}")
        return False

    def close(self) -> None:
        """Refuse all further registrations."""
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()
