"""Tests for watch expander module."""

import errno

import pytest

from src.quiesce.config import WatcherConfig
from src.quiesce.exceptions import WatchError, WatchLimitError
from src.quiesce.expander import WatchExpander
from src.quiesce.models import EventKind, RawEvent
from src.quiesce.watch_set import WatchSet


class TestRegister:
    """Tests for WatchExpander.register."""

    def test_register(self, notifier, tmp_path):
        expander = WatchExpander(notifier)

        assert expander.register(tmp_path) is True
        assert notifier.watched == [tmp_path]
        assert tmp_path in expander.watches

    def test_register_twice(self, notifier, tmp_path):
        expander = WatchExpander(notifier)
        expander.register(tmp_path)

        assert expander.register(tmp_path) is False
        assert notifier.watched == [tmp_path]

    def test_shared_watch_set(self, notifier, tmp_path):
        watches = WatchSet()
        expander = WatchExpander(notifier, watches=watches)
        expander.register(tmp_path)

        assert tmp_path in watches

    def test_registration_error_is_not_fatal(self, notifier, tmp_path):
        notifier.fail_on(tmp_path, WatchError("denied", tmp_path, errno.EACCES))
        expander = WatchExpander(notifier)

        assert expander.register(tmp_path) is False
        assert tmp_path not in expander.watches

    def test_limit_error_escalates(self, notifier, tmp_path):
        notifier.fail_on(tmp_path, WatchLimitError("limit", tmp_path, errno.ENOSPC))
        expander = WatchExpander(notifier)

        with pytest.raises(WatchLimitError):
            expander.register(tmp_path)

    def test_closed_refuses(self, notifier, tmp_path):
        expander = WatchExpander(notifier)
        expander.close()

        assert expander.closed is True
        assert expander.register(tmp_path) is False
        assert notifier.watched == []


class TestExpand:
    """Tests for WatchExpander.expand."""

    def test_new_directory_watched(self, notifier, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))

        assert expander.expand(RawEvent(subdir, EventKind.CREATE)) is True
        assert notifier.watched == [subdir]

    def test_subdirs_disabled(self, notifier, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        expander = WatchExpander(notifier, WatcherConfig(subdirs=False))

        assert expander.expand(RawEvent(subdir, EventKind.CREATE)) is False
        assert notifier.watched == []

    def test_file_not_watched(self, notifier, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))

        assert expander.expand(RawEvent(path, EventKind.CREATE)) is False
        assert notifier.watched == []

    def test_modify_on_directory_ignored(self, notifier, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))

        assert expander.expand(RawEvent(subdir, EventKind.MODIFY)) is False

    def test_vanished_directory_skipped(self, notifier, tmp_path):
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))

        assert expander.expand(RawEvent(tmp_path / "gone", EventKind.CREATE)) is False
        assert notifier.watched == []

    def test_idempotent(self, notifier, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))

        expander.expand(RawEvent(subdir, EventKind.CREATE))
        assert expander.expand(RawEvent(subdir, EventKind.CREATE | EventKind.ATTRIB)) is False
        assert notifier.watched == [subdir]

    def test_limit_error_escalates(self, notifier, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        notifier.fail_on(subdir, WatchLimitError("limit", subdir, errno.EMFILE))
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))

        with pytest.raises(WatchLimitError):
            expander.expand(RawEvent(subdir, EventKind.CREATE))


class TestForget:
    """Tests for WatchExpander.forget."""

    def test_deleted_directory_can_be_watched_again(self, notifier, tmp_path):
        build = tmp_path / "build"
        build.mkdir()
        expander = WatchExpander(notifier, WatcherConfig(subdirs=True))
        expander.expand(RawEvent(build, EventKind.CREATE))

        assert expander.forget(RawEvent(build, EventKind.DELETE)) == 1
        assert build not in expander.watches
        assert notifier.removed == [build]

        assert expander.expand(RawEvent(build, EventKind.CREATE)) is True
        assert notifier.watched == [build, build]

    def test_renamed_directory_drops_descendants(self, notifier, tmp_path):
        expander = WatchExpander(notifier)
        for path in (tmp_path, tmp_path / "a", tmp_path / "a" / "b"):
            expander.register(path)

        assert expander.forget(RawEvent(tmp_path / "a", EventKind.RENAME)) == 2
        assert expander.watches.get_watches() == frozenset({tmp_path})
        assert notifier.removed == [tmp_path / "a", tmp_path / "a" / "b"]

    def test_create_and_modify_ignored(self, notifier, tmp_path):
        expander = WatchExpander(notifier)
        expander.register(tmp_path)

        assert expander.forget(RawEvent(tmp_path, EventKind.CREATE | EventKind.MODIFY)) == 0
        assert tmp_path in expander.watches

    def test_unwatched_path_ignored(self, notifier, tmp_path):
        expander = WatchExpander(notifier)

        assert expander.forget(RawEvent(tmp_path / "file.txt", EventKind.DELETE)) == 0
        assert notifier.removed == []
