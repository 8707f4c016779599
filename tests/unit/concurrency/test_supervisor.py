"""Tests for the thread worker supervisor."""

from __future__ import annotations

import threading
import time

import pytest

from bitseed.concurrency import ConcurrentUnit, Supervisor

pytestmark = [pytest.mark.unit, pytest.mark.supervisor]


def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached in time"
        time.sleep(0.01)


class RecordingUnit(ConcurrentUnit):
    """Workers block on their stop flag; chosen slots crash once."""

    def __init__(self, count: int, guarded: bool, crash_once: set[int] | None = None):
        self.count = count
        self.guarded = guarded
        self.crash_once = set(crash_once or ())
        self.started: list[int] = []
        self.stopped: list[int] = []
        self._lock = threading.Lock()

    def desired_worker_count(self) -> int:
        return self.count

    def is_guarded(self) -> bool:
        return self.guarded

    def run_after_spawn(self, slot: int, stop: threading.Event) -> None:
        with self._lock:
            self.started.append(slot)
            crash = slot in self.crash_once
            self.crash_once.discard(slot)
        if crash:
            raise RuntimeError(f"worker {slot} failed")
        stop.wait()
        with self._lock:
            self.stopped.append(slot)


class FiniteUnit(ConcurrentUnit):
    """Workers return right away."""

    def __init__(self, count: int):
        self.count = count
        self.runs = 0
        self._lock = threading.Lock()

    def desired_worker_count(self) -> int:
        return self.count

    def is_guarded(self) -> bool:
        return False

    def run_after_spawn(self, slot: int, stop: threading.Event) -> None:
        with self._lock:
            self.runs += 1


def run_in_thread(supervisor: Supervisor) -> threading.Thread:
    thread = threading.Thread(target=supervisor.run, daemon=True)
    thread.start()
    return thread


class TestSupervisor:
    """Tests for Supervisor."""

    def test_populates_every_slot(self):
        unit = RecordingUnit(3, guarded=True)
        supervisor = Supervisor(unit, poll_interval=0.01)
        thread = run_in_thread(supervisor)

        wait_until(lambda: supervisor.live_slots() == [0, 1, 2])
        supervisor.terminate()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert sorted(unit.stopped) == [0, 1, 2]
        assert supervisor.spawn_count == 3

    def test_guarded_respawns_same_slot(self, caplog):
        unit = RecordingUnit(3, guarded=True, crash_once={1})
        supervisor = Supervisor(unit, poll_interval=0.01)
        thread = run_in_thread(supervisor)

        wait_until(lambda: supervisor.spawn_count == 4 and supervisor.live_slots() == [0, 1, 2])
        assert unit.started.count(1) == 2
        assert "worker in slot 1 crashed" in caplog.text

        supervisor.terminate()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert supervisor.reap_count == 4

    def test_unguarded_does_not_respawn(self):
        unit = FiniteUnit(3)
        supervisor = Supervisor(unit, poll_interval=0.01)
        supervisor.run()

        assert unit.runs == 3
        assert supervisor.spawn_count == 3
        assert supervisor.live_slots() == []

    def test_unguarded_crash_not_respawned(self):
        unit = RecordingUnit(2, guarded=False, crash_once={0})
        supervisor = Supervisor(unit, poll_interval=0.01)
        thread = run_in_thread(supervisor)

        wait_until(lambda: supervisor.reap_count == 1)
        assert supervisor.live_slots() == [1]
        assert supervisor.spawn_count == 2

        supervisor.terminate()
        thread.join(timeout=5)
        assert not thread.is_alive()

    def test_no_workers(self):
        unit = FiniteUnit(0)
        supervisor = Supervisor(unit)
        supervisor.run()
        assert supervisor.spawn_count == 0

    def test_external_shutdown_event(self):
        shutdown = threading.Event()
        unit = RecordingUnit(2, guarded=True)
        supervisor = Supervisor(unit, shutdown_event=shutdown, poll_interval=0.01)
        thread = run_in_thread(supervisor)

        wait_until(lambda: supervisor.live_slots() == [0, 1])
        shutdown.set()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert sorted(unit.stopped) == [0, 1]

    def test_shutdown_before_run(self):
        shutdown = threading.Event()
        shutdown.set()
        unit = RecordingUnit(2, guarded=True)
        supervisor = Supervisor(unit, shutdown_event=shutdown, poll_interval=0.01)
        supervisor.run()
        assert sorted(unit.stopped) == [0, 1]

    def test_restart_delay(self):
        unit = RecordingUnit(1, guarded=True, crash_once={0})
        supervisor = Supervisor(unit, poll_interval=0.01, restart_delay=0.2)
        thread = run_in_thread(supervisor)

        wait_until(lambda: supervisor.reap_count == 1)
        started = time.monotonic()
        wait_until(lambda: supervisor.spawn_count == 2)
        assert time.monotonic() - started > 0.1

        supervisor.terminate()
        thread.join(timeout=5)

    def test_thread_names(self):
        names = []

        class NamingUnit(FiniteUnit):
            def run_after_spawn(self, slot, stop):
                names.append(threading.current_thread().name)

        Supervisor(NamingUnit(2), name="Pool", poll_interval=0.01).run()
        assert sorted(names) == ["Pool-0", "Pool-1"]

    def test_signal_handlers_outside_main_thread(self):
        supervisor = Supervisor(FiniteUnit(1))
        errors = []

        def install():
            try:
                supervisor.install_signal_handlers()
            except ValueError as e:
                errors.append(e)

        thread = threading.Thread(target=install)
        thread.start()
        thread.join()
        assert errors == []
