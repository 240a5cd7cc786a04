from __future__ import annotations

import logging
import os
import signal
import time

import psutil

log = logging.getLogger(__name__)


def descendants(pid: int) -> list[psutil.Process]:
    """Snapshot every live descendant of ``pid``; empty if it is already gone."""
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def outside_group(pid: int, pgid: int) -> list[psutil.Process]:
    """Descendants of ``pid`` that moved to another process group, e.g. via setsid."""
    if os.name == "nt":
        return []
    found = []
    for p in descendants(pid):
        try:
            if os.getpgid(p.pid) != pgid:
                found.append(p)
        except ProcessLookupError:
            continue
    return found


def kill_group(pgid: int) -> None:
    """
    Deliver SIGKILL to a whole process group (negative-pid convention).

    On Windows there are no process groups to signal, so the tree rooted at
    ``pgid`` is killed through psutil instead. Raises OSError when the
    signal cannot be delivered.
    """
    if os.name == "nt":
        kill_tree(pgid)
        return
    os.killpg(pgid, signal.SIGKILL)


def kill_tree(pid: int) -> None:
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess as e:
        raise ProcessLookupError(f"no such process {pid}") from e
    kill_survivors(root.children(recursive=True))
    try:
        root.kill()
    except psutil.NoSuchProcess:
        pass


def kill_survivors(procs: list[psutil.Process]) -> int:
    """Kill processes from an earlier snapshot that are still running; returns how many."""
    killed = 0
    for p in procs:
        try:
            if p.is_running() and p.status() != psutil.STATUS_ZOMBIE:
                p.kill()
                killed += 1
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            log.warning(f"Cannot kill descendant {p.pid}: access denied")
    return killed


def is_alive(pid: int) -> bool:
    """True while ``pid`` exists and is not a zombie waiting to be reaped."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def wait_gone(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not is_alive(pid):
            return True
        time.sleep(0.05)
    return not is_alive(pid)
