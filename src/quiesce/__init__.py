"""
quiesce

Watches directories and reports files once they stop changing.

Features:
- Per-path debouncing: a burst of changes on one file yields one report
- Accumulation of settled files into one batch per quiet window
- Grouping mode that streams paths and marks batch boundaries
- Exclusion pattern and automatic watches on new subdirectories
- Optional command run once per batch with the paths as arguments
"""

from .models import (
    EventKind,
    FileInfo,
    RawEvent,
    Batch,
    GroupedEvent,
)

from .config import WatcherConfig

from .exceptions import (
    WatcherError,
    ConfigError,
    WatchError,
    WatchLimitError,
    NotifierClosedError,
    CommandError,
    PipelineAlreadyRunningError,
)

from .filters import PathFilter, is_reportable
from .watch_set import WatchSet, collect_watch_dirs
from .fs_watcher import Notifier, WatchdogNotifier, FSEventHandler
from .expander import WatchExpander
from .event_processor import (
    DebounceUnit,
    PathDebouncer,
    BatchAccumulator,
    GroupingStreamer,
)
from .reporter import Reporter, Dispatcher, CommandResult, run_command, format_timestamp
from .process import WatcherPipeline


__all__ = [
    # Models
    "EventKind",
    "FileInfo",
    "RawEvent",
    "Batch",
    "GroupedEvent",
    # Config
    "WatcherConfig",
    # Exceptions
    "WatcherError",
    "ConfigError",
    "WatchError",
    "WatchLimitError",
    "NotifierClosedError",
    "CommandError",
    "PipelineAlreadyRunningError",
    # Components
    "PathFilter",
    "is_reportable",
    "WatchSet",
    "collect_watch_dirs",
    "Notifier",
    "WatchdogNotifier",
    "FSEventHandler",
    "WatchExpander",
    "DebounceUnit",
    "PathDebouncer",
    "BatchAccumulator",
    "GroupingStreamer",
    "Reporter",
    "Dispatcher",
    "CommandResult",
    "run_command",
    "format_timestamp",
    # Main Pipeline
    "WatcherPipeline",
]

__version__ = "0.1.0"
