"""
Supervision loop: poll for changes, restart the command, shut down cleanly.

The loop runs on a single control thread. It only ever blocks on the stop
event (with the poll interval or quiet period as timeout) and, during a
restart, on the previous instance's completion.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from cmdwatch.core.errors import DetectionError, SpawnError
from cmdwatch.core.process.supervisor import ProcessSupervisor
from cmdwatch.shared.config import WatchConfig

from .changes import MtimeChangeDetector
from .detector import ChangeDetector
from .types import WatchState

log = logging.getLogger(__name__)


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime())


class Watcher:
    """
    Re-runs the configured command whenever a watched file changes.

    Emits STARTED / RESTARTED when an instance is spawned, WATCHING once the
    quiet period after a spawn has elapsed and STOPPED after shutdown.
    """

    def __init__(
        self,
        config: WatchConfig,
        detector: Optional[ChangeDetector] = None,
        supervisor: Optional[ProcessSupervisor] = None,
    ) -> None:
        self._cfg = config
        self._detector = detector or MtimeChangeDetector(config.root, config.matcher())
        self._supervisor = supervisor or ProcessSupervisor(config.shell)
        self._state = WatchState()
        self._lock = threading.Lock()

        self._event_cb: Optional[Callable[[dict], None]] = None
        self._error_cb: Optional[Callable[[str], None]] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_evt = threading.Event()

    def on_event(self, cb: Callable[[dict], None]) -> None:
        self._event_cb = cb

    def on_error(self, cb: Callable[[str], None]) -> None:
        self._error_cb = cb

    def get_state(self) -> WatchState:
        with self._lock:
            return WatchState(
                status=self._state.status,
                command_status=self._supervisor.status,  # type: ignore[arg-type]
                pid=self._supervisor.pid,
                restarts=self._state.restarts,
                last_exit_code=self._supervisor.last_exit_code,
                watermark=self._state.watermark,
            )

    def start(self) -> None:
        """Run the loop on a background thread."""
        self._begin()
        self._thread = threading.Thread(target=self._loop, name="Watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Request shutdown; safe to call from a signal handler or another thread."""
        self._stop_evt.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Block on the control loop until stop() is called."""
        self._begin()
        self._loop()

    def _begin(self) -> None:
        with self._lock:
            if self._state.status == "RUNNING":
                raise RuntimeError("watcher is already running")
            self._state.status = "RUNNING"
            # A stop() from a previous run must not end this one
            self._stop_evt.clear()
            if self._supervisor.closed:
                self._supervisor = ProcessSupervisor(self._cfg.shell)

    def _loop(self) -> None:
        cfg = self._cfg
        log.info(f"Watching {cfg.root} (only={cfg.only!r}, every {cfg.poll_interval_s}s)")
        try:
            self._spawn(restart=False)
            if not self._settle():
                return

            while not self._stop_evt.wait(cfg.poll_interval_s):
                try:
                    changed = self._detector.detect(self._watermark())
                except DetectionError as e:
                    log.error(f"Change detection failed: {e}")
                    self._emit_error(str(e))
                    if cfg.fail_on_detect_error:
                        raise
                    continue

                if not changed:
                    continue

                self._spawn(restart=True)
                if not self._settle():
                    return
        finally:
            log.info("Trying to clean up...")
            self._supervisor.shutdown()
            with self._lock:
                self._state.status = "STOPPED"
            self._emit({"type": "STOPPED", "at": _now_iso()})

    def _spawn(self, restart: bool) -> None:
        try:
            if restart:
                inst = self._supervisor.restart(self._cfg.command)
            else:
                inst = self._supervisor.start(self._cfg.command)
        except SpawnError as e:
            self._emit_error(str(e))
            return
        finally:
            # Advanced even on spawn failure so the next attempt waits for a new change
            self._advance_watermark()

        with self._lock:
            if restart:
                self._state.restarts += 1
        self._emit({
            "type": "RESTARTED" if restart else "STARTED",
            "pid": inst.pid,
            "at": _now_iso(),
        })

    def _settle(self) -> bool:
        """Wait out the quiet period, then move the watermark past the command's own writes."""
        if self._stop_evt.wait(self._cfg.quiet_period_s):
            return False
        self._advance_watermark()
        self._emit({"type": "WATCHING", "at": _now_iso()})
        return True

    def _watermark(self) -> float:
        with self._lock:
            if self._state.watermark is None:
                raise RuntimeError("watermark read before the first spawn")
            return self._state.watermark

    def _advance_watermark(self) -> None:
        now = time.time()
        with self._lock:
            if self._state.watermark is None or now > self._state.watermark:
                self._state.watermark = now

    def _emit(self, evt: dict) -> None:
        if self._event_cb:
            self._event_cb(evt)

    def _emit_error(self, msg: str) -> None:
        if self._error_cb:
            self._error_cb(msg)
