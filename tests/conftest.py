from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from cmdwatch.shared.config import WatchConfig

posix_only = pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX-only")


def wait_for(pred: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(interval)
    return pred()


def read_pid(path: Path, timeout: float = 5.0) -> int:
    assert wait_for(lambda: path.exists() and path.read_text().strip() != "", timeout), f"{path} never written"
    return int(path.read_text().split()[0])


def touch_after(path: Path, watermark: float, content: str = "x") -> None:
    """Write ``path`` with an mtime just past ``watermark``."""
    target = watermark + 0.01
    while time.time() <= target:
        time.sleep(0.005)
    path.write_text(content)
    os.utime(path, (target, target))


class EventLog:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[dict] = []
        self.errors: list[str] = []

    def on_event(self, evt: dict) -> None:
        with self._lock:
            self.events.append(evt)

    def on_error(self, msg: str) -> None:
        with self._lock:
            self.errors.append(msg)

    def count(self, kind: str) -> int:
        with self._lock:
            return sum(1 for e in self.events if e["type"] == kind)


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(command: str = "true", **kw) -> WatchConfig:
        kw.setdefault("poll_interval_s", 0.05)
        kw.setdefault("quiet_period_s", 0.2)
        kw.setdefault("log_to_file", False)
        return WatchConfig(root=tmp_path, command=command, **kw)

    return _make
