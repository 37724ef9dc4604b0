"""Thread-safe record of watched directories and initial tree enumeration."""

import logging
import os
import stat
import threading
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Set

from .filters import PathFilter

logger = logging.getLogger(__name__)


class WatchSet:
    """
    Directories currently registered with the notifier.

    Entries are only ever added; watches live until shutdown.
    """

    def __init__(self):
        """Initialize an empty watch set."""
        self._watches: Set[Path] = set()
        self._lock = threading.RLock()

    def add(self, path: Path) -> bool:
        """
        Record a watched directory.

        Args:
            path: Path to the directory

        Returns:
            True if the path was added, False if already present
        """
        path = Path(path)

        with self._lock:
            if path in self._watches:
                return False
            self._watches.add(path)
            return True

    def discard_tree(self, path: Path) -> List[Path]:
        """
        Remove a directory and every watched directory below it.

        Args:
            path: Path to the directory

        Returns:
            Removed paths, parents before children
        """
        path = Path(path)

        with self._lock:
            removed = [p for p in self._watches if p == path or path in p.parents]
            self._watches.difference_update(removed)
        return sorted(removed, key=lambda p: len(p.parts))

    def get_watches(self) -> FrozenSet[Path]:
        """
        Get the current set of watched directories.

        Returns:
            Frozen set of paths
        """
        with self._lock:
            return frozenset(self._watches)

    def __len__(self) -> int:
        """Return the number of watched directories."""
        with self._lock:
            return len(self._watches)

    def __contains__(self, path: Path) -> bool:
        with self._lock:
            return Path(path) in self._watches


def _has_named_pipe(directory: Path, names: Iterable[str]) -> bool:
    for name in names:
        try:
            if stat.S_ISFIFO(os.lstat(directory / name).st_mode):
                logger.warning(f"{directory / name} is a named pipe; ignoring {directory}")
                return True
        except OSError:
            continue
    return False


def collect_watch_dirs(
    roots: Iterable[Path],
    path_filter: Optional[PathFilter] = None,
    recursive: bool = True,
) -> List[Path]:
    """
    Enumerate the directories to watch at startup.

    Without recursion this is just the roots. With recursion every
    directory below each root is included, except excluded directories
    (and everything below them), directories that cannot be read, and
    directories holding named pipes.

    Args:
        roots: Root directories given by the user
        path_filter: Filter whose exclusion pattern prunes directories
        recursive: Whether to descend into subdirectories

    Returns:
        Directories in walk order, each listed once
    """
    roots = [Path(r) for r in roots]
    if not recursive:
        return roots

    found: List[Path] = []
    seen: Set[Path] = set()

    def on_error(err: OSError) -> None:
        logger.warning(f"Cannot read directory: {err}")

    for root in roots:
        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            directory = Path(dirpath)
            if path_filter is not None and path_filter.excludes(directory):
                logger.debug(f"Excluding {directory}")
                dirnames[:] = []
                continue
            if directory in seen:
                continue
            seen.add(directory)
            if _has_named_pipe(directory, filenames):
                continue
            found.append(directory)

    return found
