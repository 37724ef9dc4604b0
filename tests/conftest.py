"""Shared fixtures for quiesce tests."""

import time
from pathlib import Path

import pytest

from src.quiesce.fs_watcher import Notifier


class RecordingNotifier(Notifier):
    """Notifier fed by the test; records watch registrations."""

    def __init__(self):
        super().__init__()
        self.watched = []
        self.removed = []
        self.failures = {}

    def fail_on(self, path: Path, error: Exception) -> None:
        self.failures[Path(path)] = error

    def add_watch(self, path: Path) -> None:
        path = Path(path)
        if path in self.failures:
            raise self.failures[path]
        self.watched.append(path)

    def remove_watch(self, path: Path) -> None:
        self.removed.append(Path(path))


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def wait():
    return wait_until
