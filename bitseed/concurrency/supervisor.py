"""Thread-based worker supervisor.

Runs the workers of a unit of work in stable slots, respawns guarded
workers when they exit and propagates shutdown to every live worker.
"""

from __future__ import annotations

import logging
import queue
import signal
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class ConcurrentUnit(ABC):
    """A unit of work the supervisor runs in parallel slots."""

    @abstractmethod
    def desired_worker_count(self) -> int:
        """Number of slots to keep populated."""

    @abstractmethod
    def is_guarded(self) -> bool:
        """Whether exited workers are respawned in their slot."""

    @abstractmethod
    def run_after_spawn(self, slot: int, stop: threading.Event) -> None:
        """Worker body.

        Args:
            slot: Stable 0-based slot, reused when the worker is respawned
            stop: Set when the worker has to finish

        """


@dataclass
class Worker:
    slot: int
    generation: int
    stop: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None
    started_at: float = field(default_factory=time.monotonic)

    def is_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()


class Supervisor:
    """Keeps ``unit.desired_worker_count()`` workers running.

    Exited workers report to a queue; the supervisor loop reaps every
    entry, joining the thread and freeing its slot, before it decides
    whether to respawn.
    """

    def __init__(
        self,
        unit: ConcurrentUnit,
        shutdown_event: threading.Event | None = None,
        poll_interval: float = 0.5,
        restart_delay: float = 0.0,
        join_timeout: float = 5.0,
        name: str | None = None,
    ):
        self.unit = unit
        self.shutdown_event = shutdown_event or threading.Event()
        self.poll_interval = poll_interval
        self.restart_delay = restart_delay
        self.join_timeout = join_timeout
        self.name = name or type(unit).__name__

        self._workers: dict[int, Worker] = {}
        self._exited: queue.Queue[Worker] = queue.Queue()
        self._lock = threading.Lock()
        self._generation = 0
        self.spawn_count = 0
        self.reap_count = 0

    def run(self) -> None:
        """Populate every slot and supervise until shutdown.

        An unguarded unit returns once all of its workers have exited.
        """
        n_workers = self.unit.desired_worker_count()
        guarded = self.unit.is_guarded()
        if n_workers <= 0:
            return

        logger.info(
            "%s supervisor starting %d %s workers",
            self.name,
            n_workers,
            "guarded" if guarded else "unguarded",
        )
        for slot in range(n_workers):
            self._spawn(slot)

        try:
            while not self.shutdown_event.is_set():
                try:
                    worker = self._exited.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue
                self._reap(worker)

                if not guarded:
                    if not self.live_slots():
                        break
                    continue

                if self.restart_delay and self.shutdown_event.wait(self.restart_delay):
                    break
                if not self.shutdown_event.is_set():
                    logger.info("%s supervisor restarting slot %d", self.name, worker.slot)
                    self._spawn(worker.slot)
        finally:
            self._stop_all()

        logger.info("%s supervisor stopped", self.name)

    def terminate(self) -> None:
        """Ask the supervisor and all of its workers to finish."""
        self.shutdown_event.set()

    def install_signal_handlers(self) -> None:
        """Turn SIGTERM and SIGINT into a shutdown request.

        Only possible from the main thread; elsewhere this is a no-op.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in the main thread, signal handlers not installed")
            return

        def signal_handler(signum: int, _frame: Any) -> None:
            logger.info("Received signal %d, stopping %s workers", signum, self.name)
            self.terminate()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def live_slots(self) -> list[int]:
        """Slots whose worker thread is still running."""
        with self._lock:
            return sorted(slot for slot, worker in self._workers.items() if worker.is_alive())

    def _spawn(self, slot: int) -> Worker:
        with self._lock:
            if slot in self._workers:
                return self._workers[slot]
            self._generation += 1
            worker = Worker(slot=slot, generation=self._generation)
            # Propagate an already requested shutdown.
            if self.shutdown_event.is_set():
                worker.stop.set()
            worker.thread = threading.Thread(
                target=self._run_worker,
                args=(worker,),
                name=f"{self.name}-{slot}",
                daemon=True,
            )
            self._workers[slot] = worker
            self.spawn_count += 1

        worker.thread.start()
        logger.debug("%s spawned worker in slot %d", self.name, slot)
        return worker

    def _run_worker(self, worker: Worker) -> None:
        try:
            self.unit.run_after_spawn(worker.slot, worker.stop)
        except Exception:
            logger.exception("%s worker in slot %d crashed", self.name, worker.slot)
        finally:
            self._exited.put(worker)

    def _reap(self, worker: Worker) -> None:
        if worker.thread is not None:
            worker.thread.join(self.join_timeout)
        with self._lock:
            if self._workers.get(worker.slot) is worker:
                del self._workers[worker.slot]
            self.reap_count += 1
        logger.debug(
            "%s reaped worker in slot %d after %.1fs",
            self.name,
            worker.slot,
            time.monotonic() - worker.started_at,
        )

    def _stop_all(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
        for worker in workers:
            worker.stop.set()

        deadline = time.monotonic() + self.join_timeout
        for worker in workers:
            if worker.thread is not None:
                worker.thread.join(max(0.0, deadline - time.monotonic()))
            if worker.is_alive():
                logger.warning(
                    "%s worker in slot %d did not stop within %.1fs",
                    self.name,
                    worker.slot,
                    self.join_timeout,
                )

        while True:
            try:
                self._reap(self._exited.get_nowait())
            except queue.Empty:
                break
