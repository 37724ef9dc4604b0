"""Configuration for the quiesce package."""

import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Pattern

from .exceptions import ConfigError


ENV_PREFIX = "QUIESCE_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class WatcherConfig:
    """
    Configuration options for the watcher pipeline.

    Attributes:
        latency: Seconds a path must stay quiet before it is reported; also
            the window for accumulating settled paths into one batch. Zero
            disables debouncing and accumulation.
        exclude: Regular expression; events on matching paths are dropped
        subdirs: Whether to watch subdirectories, including new ones
        long_format: Prefix reports with a timestamp and add kind/size columns
        group: Stream paths as they settle, marking batch boundaries
        raw: Report every raw event without consolidation
        command: Command template run once per batch with the paths appended
        dry_run: Log the command instead of running it
        timestamp_format: strftime format for long-format timestamps
        poll_interval: Seconds between shutdown checks in idle loops
        shutdown_timeout: Seconds to wait for each worker thread on shutdown
    """
    latency: float = 1.0
    exclude: Optional[str] = None
    subdirs: bool = False
    long_format: bool = False
    group: bool = False
    raw: bool = False
    command: List[str] = field(default_factory=list)
    dry_run: bool = False
    timestamp_format: str = "%Y-%m-%d %H:%M:%S.%f"
    poll_interval: float = 0.1
    shutdown_timeout: float = 5.0

    def __post_init__(self):
        if self.latency < 0:
            raise ConfigError(f"latency must not be negative: {self.latency}")
        if self.group and self.raw:
            raise ConfigError("group and raw output modes are mutually exclusive")
        if isinstance(self.command, str):
            self.command = shlex.split(self.command)
        self._exclude_re: Optional[Pattern[str]] = None
        if self.exclude:
            try:
                self._exclude_re = re.compile(self.exclude)
            except re.error as e:
                raise ConfigError(f"invalid exclude pattern {self.exclude!r}: {e}") from e

    def should_exclude(self, path: Path) -> bool:
        """
        Check if a path matches the exclusion pattern.

        Args:
            path: Path to check

        Returns:
            True if the path should be dropped
        """
        if self._exclude_re is None:
            return False
        return self._exclude_re.search(str(path)) is not None

    @classmethod
    def from_env(cls, **overrides) -> "WatcherConfig":
        """
        Build a configuration from ``QUIESCE_*`` environment variables.

        Keyword arguments that are not None take precedence over the
        environment.
        """
        values = {}
        latency = os.environ.get(f"{ENV_PREFIX}LATENCY")
        if latency:
            try:
                values["latency"] = float(latency)
            except ValueError as e:
                raise ConfigError(f"invalid {ENV_PREFIX}LATENCY: {latency!r}") from e
        exclude = os.environ.get(f"{ENV_PREFIX}EXCLUDE")
        if exclude:
            values["exclude"] = exclude
        command = os.environ.get(f"{ENV_PREFIX}COMMAND")
        if command:
            values["command"] = shlex.split(command)
        for name, attr in (
            ("SUBDIRS", "subdirs"),
            ("LONG", "long_format"),
            ("GROUP", "group"),
            ("RAW", "raw"),
            ("DRY_RUN", "dry_run"),
        ):
            value = os.environ.get(f"{ENV_PREFIX}{name}")
            if value is not None:
                values[attr] = value.strip().lower() in _TRUE_VALUES

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
