from __future__ import annotations

import errno
import time

import pytest

from cmdwatch.core.errors import DetectionError
from cmdwatch.core.process.tree import is_alive, wait_gone
from cmdwatch.core.watch.detector import ChangeDetector
from cmdwatch.core.watch.watcher import Watcher

from conftest import posix_only, read_pid, touch_after, wait_for

pytestmark = posix_only


class ScriptedDetector(ChangeDetector):
    """Replays a fixed sequence of outcomes, then reports no change."""

    def __init__(self, outcomes) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def detect(self, watermark: float) -> bool:
        self.calls += 1
        if not self._outcomes:
            return False
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _vanished() -> DetectionError:
    return DetectionError("/tmp/x.txt", FileNotFoundError(errno.ENOENT, "No such file or directory"))


@pytest.fixture
def running(events):
    started = []

    def _run(watcher: Watcher, also=None) -> Watcher:
        def fan_out(evt: dict) -> None:
            if also is not None:
                also(evt)
            events.on_event(evt)

        watcher.on_event(fan_out)
        watcher.on_error(events.on_error)
        watcher.start()
        started.append(watcher)
        return watcher

    yield _run
    for w in started:
        w.stop()
        w.join(10)


def test_matching_change_triggers_exactly_one_restart(make_config, running, events, tmp_path):
    w = running(Watcher(make_config("echo hi", only=r"\.txt$")))
    assert wait_for(lambda: events.count("WATCHING") == 1)

    touch_after(tmp_path / "a.txt", w.get_state().watermark)
    assert wait_for(lambda: events.count("RESTARTED") == 1)
    assert wait_for(lambda: events.count("WATCHING") == 2)
    time.sleep(0.3)

    assert w.get_state().restarts == 1


def test_non_matching_change_triggers_nothing(make_config, running, events, tmp_path):
    w = running(Watcher(make_config("echo hi", only=r"\.txt$")))
    assert wait_for(lambda: events.count("WATCHING") == 1)

    touch_after(tmp_path / "a.bin", w.get_state().watermark)
    time.sleep(0.4)

    assert events.count("RESTARTED") == 0
    assert w.get_state().restarts == 0


def test_commands_own_writes_do_not_retrigger(make_config, running, events, tmp_path):
    out = tmp_path / "build.txt"
    w = running(Watcher(make_config(f"echo built >> {out}", only=r"\.txt$", quiet_period_s=0.3)))
    assert wait_for(lambda: events.count("WATCHING") == 1)
    assert out.exists()

    touch_after(tmp_path / "src.txt", w.get_state().watermark)
    assert wait_for(lambda: events.count("RESTARTED") == 1)
    assert wait_for(lambda: events.count("WATCHING") == 2)
    time.sleep(0.4)

    assert out.read_text().count("built") == 2
    assert events.count("RESTARTED") == 1


def test_restart_kills_old_group_before_new_instance(make_config, running, events, tmp_path):
    pids = tmp_path / "pids.log"
    command = f"sleep 100 & echo $! >> {pids}; wait"
    spawned = []
    previous_alive = []

    def check_previous(evt: dict) -> None:
        if evt["type"] == "RESTARTED":
            previous_alive.append(is_alive(spawned[-1]))
        if "pid" in evt:
            spawned.append(evt["pid"])

    w = running(Watcher(make_config(command, only=r"\.txt$")), also=check_previous)
    first_child = read_pid(pids)
    first_shell = w.get_state().pid
    assert wait_for(lambda: events.count("WATCHING") == 1)

    touch_after(tmp_path / "a.txt", w.get_state().watermark)
    assert wait_for(lambda: len(pids.read_text().split()) == 2)
    assert wait_for(lambda: events.count("RESTARTED") == 1)

    assert not is_alive(first_shell)
    assert wait_gone(first_child)
    assert previous_alive == [False]
    assert w.get_state().pid != first_shell
    assert w.get_state().command_status == "RUNNING"


def test_stop_kills_running_group(make_config, events, tmp_path):
    pidfile = tmp_path / "child.pid"
    w = Watcher(make_config(f"sleep 100 & echo $! > {pidfile}; wait"))
    w.on_event(events.on_event)
    w.start()
    grandchild = read_pid(pidfile)
    shell = w.get_state().pid

    w.stop()
    w.join(10)

    assert events.count("STOPPED") == 1
    assert not is_alive(shell)
    assert wait_gone(grandchild)
    state = w.get_state()
    assert state.status == "STOPPED"
    assert state.command_status == "IDLE"


def test_stop_during_quiet_period_returns_promptly(make_config, events):
    w = Watcher(make_config("sleep 100", quiet_period_s=30))
    w.on_event(events.on_event)
    w.start()
    assert wait_for(lambda: events.count("STARTED") == 1)

    began = time.monotonic()
    w.stop()
    w.join(10)

    assert time.monotonic() - began < 5
    assert events.count("WATCHING") == 0
    assert events.count("STOPPED") == 1


def test_detection_error_skips_the_cycle(make_config, running, events):
    detector = ScriptedDetector([_vanished(), True])
    w = running(Watcher(make_config("true"), detector=detector))

    assert wait_for(lambda: events.count("RESTARTED") == 1)
    assert len(events.errors) == 1
    assert "x.txt" in events.errors[0]
    assert w.get_state().status == "RUNNING"


def test_detection_error_is_fatal_when_strict(make_config, events):
    detector = ScriptedDetector([_vanished()])
    w = Watcher(make_config("sleep 100", fail_on_detect_error=True), detector=detector)
    w.on_event(events.on_event)

    with pytest.raises(DetectionError):
        w.run()

    assert events.count("STOPPED") == 1
    assert w.get_state().command_status == "IDLE"


def test_spawn_failure_does_not_stop_the_loop(make_config, running, events, tmp_path):
    detector = ScriptedDetector([False, True, False])
    w = running(Watcher(make_config("true", shell=str(tmp_path / "missing-sh")), detector=detector))

    assert wait_for(lambda: len(events.errors) == 2)
    assert all("Failed to start command" in e for e in events.errors)
    assert wait_for(lambda: detector.calls > 3)
    assert w.get_state().status == "RUNNING"
    assert events.count("STARTED") == 0


def test_watermark_only_moves_forward(make_config, running, events, tmp_path):
    w = running(Watcher(make_config("true", only=r"\.txt$")))
    assert wait_for(lambda: events.count("WATCHING") == 1)
    first = w.get_state().watermark

    touch_after(tmp_path / "a.txt", first)
    assert wait_for(lambda: events.count("WATCHING") == 2)

    assert w.get_state().watermark > first


def test_run_twice_is_refused(make_config):
    w = Watcher(make_config("true"), detector=ScriptedDetector([]))
    w.start()
    try:
        assert wait_for(lambda: w.get_state().status == "RUNNING")
        with pytest.raises(RuntimeError):
            w.run()
    finally:
        w.stop()
        w.join(10)


def test_watcher_can_run_again_after_stop(make_config, events):
    w = Watcher(make_config("sleep 100"))
    w.on_event(events.on_event)
    w.start()
    assert wait_for(lambda: events.count("STARTED") == 1)
    w.stop()
    w.join(10)

    w.start()
    try:
        assert wait_for(lambda: events.count("STARTED") == 2)
        assert wait_for(lambda: events.count("WATCHING") == 1)
        state = w.get_state()
        assert state.status == "RUNNING"
        assert state.command_status == "RUNNING"
        assert events.count("STOPPED") == 1
    finally:
        w.stop()
        w.join(10)


def test_stop_right_after_start_is_honoured(make_config, events):
    w = Watcher(make_config("sleep 100", quiet_period_s=30))
    w.on_event(events.on_event)
    w.start()
    w.stop()
    w.join(10)

    assert events.count("STOPPED") == 1
    assert w.get_state().status == "STOPPED"


def test_watermark_is_unset_before_first_spawn(make_config):
    w = Watcher(make_config("true"), detector=ScriptedDetector([]))
    assert w.get_state().watermark is None
    with pytest.raises(RuntimeError):
        w._watermark()
