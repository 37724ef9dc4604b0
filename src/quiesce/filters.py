"""Path exclusion and report-kind policy applied to raw events."""

import logging
from typing import Optional

from .config import WatcherConfig
from .models import EventKind, RawEvent

logger = logging.getLogger(__name__)

# Kinds that lead to a report. Rename, delete and attribute-only changes
# are informational: they show up in raw mode and debug logs only.
REPORTABLE_KINDS = EventKind.CREATE | EventKind.MODIFY


def is_reportable(kinds: EventKind) -> bool:
    """Check if an event with these kinds should be debounced and reported."""
    return bool(kinds & REPORTABLE_KINDS)


class PathFilter:
    """Drops events whose path matches the configured exclusion pattern."""

    def __init__(self, config: Optional[WatcherConfig] = None):
        self.config = config or WatcherConfig()

    def apply(self, event: RawEvent) -> Optional[RawEvent]:
        """
        Filter a single event.

        Args:
            event: The raw event

        Returns:
            The event unchanged, or None if it is excluded
        """
        if self.config.should_exclude(event.path):
            logger.debug(f"Excluding: {event.path}")
            return None
        return event

    def excludes(self, path) -> bool:
        """Check a bare path against the exclusion pattern."""
        return self.config.should_exclude(path)
