from __future__ import annotations

from abc import ABC, abstractmethod


class ChangeDetector(ABC):
    """Interface for deciding whether watched files changed since a watermark."""

    @abstractmethod
    def detect(self, watermark: float) -> bool:
        """
        Return True when any watched file was modified strictly after
        ``watermark`` (seconds since the epoch).

        Raises DetectionError when the tree cannot be read.
        """
        ...
