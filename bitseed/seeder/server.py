"""Seed server: seed peer plus periodic self-announce.

Slot 0 runs the seed peer with its own supervised accept loops, slot 1
announces this node as a complete peer of every active torrent.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from bitseed.concurrency.supervisor import ConcurrentUnit, Supervisor
from bitseed.exceptions import SupervisorError
from bitseed.logging_config import get_logger
from bitseed.models import AnnounceStatus
from bitseed.persistence.base import reset_if_needed

if TYPE_CHECKING:
    from bitseed.persistence.base import Persistence
    from bitseed.seeder.peer import SeedPeer

logger = get_logger(__name__)

PEER_SLOT = 0
ANNOUNCE_SLOT = 1


class SeedServer(ConcurrentUnit):
    def __init__(
        self,
        peer: SeedPeer,
        persistence: Persistence,
        announce_interval: int = 30,
        stop_after_iterations: int = 20,
        poll_interval: float = 0.5,
        restart_delay: float = 0.0,
    ):
        self.peer = peer
        self.persistence = persistence
        self.announce_interval = announce_interval
        self.stop_after_iterations = stop_after_iterations
        self.poll_interval = poll_interval
        self.restart_delay = restart_delay
        self.shutdown_event = threading.Event()
        self.supervisor: Supervisor | None = None

    def desired_worker_count(self) -> int:
        return 2

    def is_guarded(self) -> bool:
        return True

    def start(self, install_signal_handlers: bool = True) -> None:
        """Run until SIGTERM/SIGINT or ``terminate()``."""
        # Bind up front so the announced port is known and bind errors reach the caller.
        self.peer.start_listening()
        self.supervisor = Supervisor(
            self,
            shutdown_event=self.shutdown_event,
            poll_interval=self.poll_interval,
            restart_delay=self.restart_delay,
            name="SeedServer",
        )
        if install_signal_handlers:
            self.supervisor.install_signal_handlers()
        try:
            self.supervisor.run()
        finally:
            self.peer.stop_listening()

    def terminate(self) -> None:
        self.shutdown_event.set()

    def run_after_spawn(self, slot: int, stop: threading.Event) -> None:
        reset_if_needed(self.persistence)

        if slot == PEER_SLOT:
            self.peer.start(stop)
        elif slot == ANNOUNCE_SLOT:
            self.announce_loop(stop)
        else:
            msg = f"Invalid worker slot while running seed server: {slot}"
            raise SupervisorError(msg, {"slot": slot})

    def announce(self) -> int:
        """Announce this node for every active torrent once.

        Returns:
            Number of torrents announced
        """
        torrents = self.persistence.get_all_info_hashes()
        for torrent in torrents:
            self.persistence.save_announce(
                torrent.info_hash,
                self.peer.peer_id,
                self.peer.external_address,
                self.peer.port,
                downloaded=torrent.length,
                uploaded=0,
                left=0,
                status=AnnounceStatus.COMPLETE,
                ttl=self.announce_interval,
            )

        logger.info(
            "Seed server announced itself for %d torrents at address %s:%d "
            "(announces every %ds)",
            len(torrents),
            self.peer.external_address,
            self.peer.port,
            self.announce_interval,
        )
        return len(torrents)

    def announce_loop(self, stop: threading.Event) -> None:
        iterations = 0
        while iterations < self.stop_after_iterations and not stop.is_set():
            self.announce()
            iterations += 1
            if stop.wait(self.announce_interval):
                return

        logger.info("Announce worker restarts after %d rounds", iterations)
