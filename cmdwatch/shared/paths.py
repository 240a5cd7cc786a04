from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "cmdwatch"

def app_data_dir() -> Path:
    explicit = os.environ.get("CMDWATCH_HOME")
    if explicit:
        return Path(explicit)
    state = os.environ.get("XDG_STATE_HOME") or os.environ.get("APPDATA")
    if state:
        return Path(state) / APP_NAME
    return Path.home() / f".{APP_NAME}"

def config_path() -> Path:
    return app_data_dir() / "config.json"

def logs_dir() -> Path:
    return app_data_dir() / "logs"

def log_path() -> Path:
    return logs_dir() / f"{APP_NAME}.log"

def ensure_app_dirs() -> None:
    app_data_dir().mkdir(parents=True, exist_ok=True)
    logs_dir().mkdir(parents=True, exist_ok=True)
