from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from cmdwatch.core.errors import ConfigError
from cmdwatch.shared.config import WatchSettings, describe_validation_error
from cmdwatch.shared.paths import config_path


class ConfigStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self._explicit = path is not None
        self._path = path if path is not None else config_path()

    def load(self) -> WatchSettings:
        if not self._path.exists():
            if self._explicit:
                raise ConfigError(f"config file {self._path} does not exist")
            return WatchSettings()

        try:
            raw = self._path.read_text(encoding="utf-8")
            data: Any = json.loads(raw)
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read config file {self._path}: {e}") from e

        try:
            return WatchSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"{self._path}: {describe_validation_error(e)}") from e

    def save(self, settings: WatchSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
