"""Custom exceptions for the quiesce package."""


class WatcherError(Exception):
    """Base exception for all watcher errors."""
    pass


class ConfigError(WatcherError):
    """Invalid watcher configuration."""
    pass


class WatchError(WatcherError):
    """A directory watch could not be registered with the notifier."""

    def __init__(self, message: str, path=None, errno: int = None):
        super().__init__(message)
        self.path = path
        self.errno = errno


class WatchLimitError(WatchError):
    """The notifier ran out of watch resources (too many open watches)."""
    pass


class NotifierClosedError(WatcherError):
    """The upstream event stream closed while the pipeline was running."""
    pass


class CommandError(WatcherError):
    """An external command could not be run or exited non-zero."""
    pass


class PipelineAlreadyRunningError(WatcherError):
    """Watcher pipeline is already running."""
    pass
