from __future__ import annotations

from typing import Optional


class WatchError(Exception):
    """Base class for errors raised by the watch loop and its collaborators."""


class ConfigError(WatchError):
    """Bad directory, bad filter pattern or unreadable config file. Fatal."""


class DetectionError(WatchError):
    """A filesystem walk or stat failed during a poll cycle."""

    def __init__(self, path: str, cause: OSError) -> None:
        super().__init__(f"{path}: {cause.strerror or cause}")
        self.path = path
        self.cause = cause


class SpawnError(WatchError):
    """The shell running the command could not be started."""

    def __init__(self, command: str, cause: Optional[OSError] = None) -> None:
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to start command {command}{reason}")
        self.command = command
        self.cause = cause
