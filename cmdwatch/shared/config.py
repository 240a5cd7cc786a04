from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def default_shell() -> str:
    return "cmd" if os.name == "nt" else "sh"


class WatchSettings(BaseModel):
    """Tunables that may come from the JSON config file or from flags."""

    model_config = ConfigDict(extra="forbid")

    only: str = ".*"
    poll_interval_s: float = Field(default=1.0, gt=0)
    quiet_period_s: float = Field(default=3.0, ge=0)
    shell: str = Field(default_factory=default_shell, min_length=1)
    fail_on_detect_error: bool = False
    log_level: str = "INFO"
    log_to_file: bool = True

    @field_validator("only")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"bad filter pattern {value!r}: {e}") from e
        return value

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level


class WatchConfig(WatchSettings):
    """Immutable watch configuration handed to the supervision loop."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    root: Path
    command: str = Field(min_length=1)

    @field_validator("root")
    @classmethod
    def _check_root(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"{value} is not an absolute path")
        if not value.is_dir():
            raise ValueError(f"{value} is not a directory")
        return value

    @field_validator("command")
    @classmethod
    def _check_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be blank")
        return value

    @classmethod
    def from_settings(cls, settings: WatchSettings, root: Path, command: str, **overrides: Any) -> "WatchConfig":
        return cls(root=root, command=command, **{**settings.model_dump(), **overrides})

    def matcher(self) -> Callable[[str], bool]:
        regex = re.compile(self.only)

        def matches(path: str) -> bool:
            return regex.search(path) is not None

        return matches


def describe_validation_error(exc: ValidationError) -> str:
    """Collapse a pydantic error into a single human-readable line."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)
