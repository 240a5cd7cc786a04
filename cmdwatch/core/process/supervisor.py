"""
Supervisor for the watched command.

State machine: IDLE -> RUNNING -> IDLE

At most one instance is live at a time. The instance runs in its own process
group so the shell and everything it spawns can be killed as one unit. Exit
of the instance is observed on a dedicated waiter thread and handed back to
the control thread through a single-use Future.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Optional

from cmdwatch.core.errors import SpawnError
from cmdwatch.shared.config import default_shell

from .tree import kill_group, kill_survivors, outside_group

log = logging.getLogger(__name__)


def shell_argv(shell: str, command: str) -> list[str]:
    flag = "/c" if os.path.basename(shell).lower() in ("cmd", "cmd.exe") else "-c"
    return [shell, flag, command]


@dataclass
class RunningInstance:
    """One spawned command; replaced, never reused, on each restart."""
    process: subprocess.Popen
    pgid: int
    command: str
    done: "Future[int]" = field(default_factory=Future)
    killed: bool = False  # set by the control thread before signalling
    waiter: Optional[threading.Thread] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def cancel(self) -> None:
        """Kill the whole process group. Raises OSError if it cannot be signalled."""
        # Once the leader is reaped its pid may belong to an unrelated process
        escaped = [] if self.done.done() else outside_group(self.pid, self.pgid)
        self.killed = True
        try:
            kill_group(self.pgid)
        finally:
            stragglers = kill_survivors(escaped)
            if stragglers:
                log.info(f"Killed {stragglers} process(es) outside group {self.pgid}")


class ProcessSupervisor:
    """
    Owns the currently running command instance.

    All methods are meant to be called from a single control thread; the
    only cross-thread traffic is the completion Future of each instance.
    """

    def __init__(self, shell: Optional[str] = None) -> None:
        self._shell = shell or default_shell()
        self._current: Optional[RunningInstance] = None
        self._last_exit_code: Optional[int] = None
        self._closed = False

    @property
    def status(self) -> str:
        inst = self._current
        if inst is None or inst.done.done():
            return "IDLE"
        return "RUNNING"

    @property
    def pid(self) -> Optional[int]:
        inst = self._current
        return inst.pid if inst is not None and not inst.done.done() else None

    @property
    def last_exit_code(self) -> Optional[int]:
        inst = self._current
        if inst is not None and inst.done.done():
            return inst.done.result()
        return self._last_exit_code

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, command: str) -> RunningInstance:
        """Spawn ``command`` under the shell and return without waiting for it."""
        if self._closed:
            raise RuntimeError("supervisor has been shut down")
        if self._current is not None and self._current.done.done():
            # Background jobs of an exited command still hold its group
            self.kill()
        if self._current is not None:
            raise RuntimeError(f"command already running as pid {self._current.pid}; use restart()")

        kwargs: dict[str, Any] = {"stdin": subprocess.DEVNULL}
        if os.name == "nt":
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True

        log.info(f"Trying... {command}")
        try:
            proc = subprocess.Popen(shell_argv(self._shell, command), **kwargs)
        except OSError as e:
            log.error(f"Failed to start command {command}: {e}")
            raise SpawnError(command, e) from e

        inst = RunningInstance(process=proc, pgid=proc.pid, command=command)
        inst.done.set_running_or_notify_cancel()
        inst.waiter = threading.Thread(
            target=self._await_exit, args=(inst,), name=f"CommandWaiter-{proc.pid}", daemon=True
        )
        inst.waiter.start()
        self._current = inst
        return inst

    def kill(self) -> None:
        """
        Kill the instance's process group and block until its exit is observed.

        The group is signalled even when the leader already exited, so jobs it
        left running in the background do not outlive the instance.
        """
        inst = self._current
        if inst is None:
            return

        exited = inst.done.done()
        try:
            inst.cancel()
        except OSError as e:
            if exited:
                log.debug(f"Process group {inst.pgid} already gone: {e}")
            else:
                log.warning(f"Failed to kill process group {inst.pgid}: {e}")
                inst.process.kill()

        inst.done.result()
        self._reap()

    def restart(self, command: str) -> RunningInstance:
        self.kill()
        return self.start(command)

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Exit code of the current instance once it finishes; None when idle."""
        inst = self._current
        if inst is None:
            return self._last_exit_code
        return inst.done.result(timeout=timeout)

    def shutdown(self) -> None:
        if self._closed:
            return
        self.kill()
        self._closed = True
        log.debug("Supervisor shut down")

    def _reap(self) -> None:
        inst = self._current
        if inst is None or not inst.done.done():
            return
        if inst.waiter is not None:
            inst.waiter.join()
        self._last_exit_code = inst.done.result()
        self._current = None

    @staticmethod
    def _await_exit(inst: RunningInstance) -> None:
        try:
            code = inst.process.wait()
        except BaseException as e:
            inst.done.set_exception(e)
            raise

        if inst.killed:
            log.info(f"Process group {inst.pgid} killed")
        elif code != 0:
            log.warning(f"Command failed: exit status {code}")
        else:
            log.info(f"Command ran successfully {inst.command}")
        inst.done.set_result(code)
