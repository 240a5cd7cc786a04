from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

WatchStatus = Literal["STOPPED", "RUNNING"]
CommandStatus = Literal["IDLE", "RUNNING"]


@dataclass
class WatchState:
    """Snapshot of the supervision loop, safe to hand to other threads."""
    status: WatchStatus = "STOPPED"
    command_status: CommandStatus = "IDLE"
    pid: Optional[int] = None
    restarts: int = 0
    last_exit_code: Optional[int] = None
    watermark: Optional[float] = None  # seconds since the epoch
