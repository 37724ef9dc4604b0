"""Data models for the quiesce package."""

import os
import stat
import time
from dataclasses import dataclass, field, replace
from enum import Flag
from pathlib import Path
from typing import Iterator, List, Optional


class EventKind(Flag):
    """Kinds of filesystem change carried by a single notification."""
    CREATE = 1
    MODIFY = 2
    RENAME = 4
    DELETE = 8
    ATTRIB = 16

    def names(self) -> List[str]:
        """Names of the kinds set in this value, in report order."""
        return [kind.name for kind in _REPORT_ORDER if kind in self]

    def __str__(self) -> str:
        return "|".join(self.names())


_REPORT_ORDER = (
    EventKind.CREATE,
    EventKind.MODIFY,
    EventKind.DELETE,
    EventKind.RENAME,
    EventKind.ATTRIB,
)


@dataclass(frozen=True)
class FileInfo:
    """
    File metadata captured when an event was received.

    Attributes:
        size: Size of the file in bytes
        is_directory: Whether the path is a directory
    """
    size: int
    is_directory: bool = False

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "FileInfo":
        """Create from an ``os.stat`` result."""
        return cls(size=st.st_size, is_directory=stat.S_ISDIR(st.st_mode))


@dataclass(frozen=True)
class RawEvent:
    """
    A normalized change notification for one path.

    Attributes:
        path: Path the notifier reported
        timestamp: Unix timestamp recorded when the notification arrived
        kinds: Set of change kinds (never empty)
        info: File metadata, or None if the path could not be inspected
    """
    path: Path
    kinds: EventKind
    timestamp: float = field(default_factory=time.time)
    info: Optional[FileInfo] = None

    def __post_init__(self):
        if not self.kinds:
            raise ValueError(f"event kinds must not be empty: {self.path}")

    @property
    def is_directory(self) -> bool:
        return self.info is not None and self.info.is_directory

    def merge(self, newer: "RawEvent") -> "RawEvent":
        """
        Combine with a later event on the same path.

        Kinds are OR-ed together; timestamp and metadata come from the
        newer event.

        Args:
            newer: The later event

        Returns:
            A new RawEvent
        """
        return replace(
            self,
            kinds=self.kinds | newer.kinds,
            timestamp=newer.timestamp,
            info=newer.info,
        )


@dataclass
class Batch:
    """
    Settled events flushed together at the end of an accumulation window.

    Attributes:
        events: One event per path, in first-settle order
        flushed_at: Unix timestamp of the flush
    """
    events: List[RawEvent]
    flushed_at: float = field(default_factory=time.time)

    @property
    def paths(self) -> List[Path]:
        return [e.path for e in self.events]

    @property
    def kinds(self) -> EventKind:
        """All kinds seen in this batch."""
        kinds = EventKind(0)
        for event in self.events:
            kinds |= event.kinds
        return kinds

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[RawEvent]:
        return iter(self.events)


@dataclass(frozen=True)
class GroupedEvent:
    """
    One element of the grouping stream.

    Attributes:
        event: The settled event
        last: True if this event closes its batch
    """
    event: RawEvent
    last: bool = False
