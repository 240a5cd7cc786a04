"""
Polling change detector.

Walks the watched tree on every call and compares each matching file's
modification time against the watermark. Polling bounds change-detection
latency to one poll interval; OS-level notification is not used.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterator, Optional

from cmdwatch.core.errors import DetectionError

from .detector import ChangeDetector

log = logging.getLogger(__name__)

PathFilter = Callable[[str], bool]


def _match_all(path: str) -> bool:
    return True


def _raise(err: OSError) -> None:
    raise err


class MtimeChangeDetector(ChangeDetector):
    """
    Stat-based detector over a directory tree.

    Directories are traversed but never compared. Files whose path does not
    pass ``path_filter`` are skipped without a stat call. The whole tree is
    scanned even after the first hit so every changed path gets reported.
    Any walk or stat failure aborts the pass with a DetectionError.
    """

    def __init__(self, root: Path, path_filter: Optional[PathFilter] = None) -> None:
        self._root = str(root)
        self._filter = path_filter or _match_all

    @property
    def root(self) -> str:
        return self._root

    def _files(self) -> Iterator[str]:
        try:
            for dirpath, _dirnames, filenames in os.walk(self._root, onerror=_raise):
                for name in filenames:
                    yield os.path.join(dirpath, name)
        except OSError as e:
            raise DetectionError(e.filename or self._root, e) from e

    def changed_paths(self, watermark: float) -> list[str]:
        changed: list[str] = []
        for path in self._files():
            if not self._filter(path):
                continue
            try:
                mtime = os.stat(path).st_mtime
            except OSError as e:
                raise DetectionError(path, e) from e
            if mtime > watermark:
                changed.append(path)
        return changed

    def detect(self, watermark: float) -> bool:
        changed = self.changed_paths(watermark)
        for path in changed:
            log.info(f"{path} was saved, running command")
        return bool(changed)
