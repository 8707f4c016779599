"""Tests for the seed server announce loop and slot dispatch."""

from __future__ import annotations

import threading
import time

import pytest

from bitseed.exceptions import SupervisorError
from bitseed.models import AnnounceStatus, SeederConfig
from bitseed.persistence import InMemoryPersistence
from bitseed.seeder import SeedPeer, SeedServer

pytestmark = [pytest.mark.unit, pytest.mark.seeder]


@pytest.fixture
def persistence_with_torrent(torrent):
    persistence = InMemoryPersistence()
    persistence.save_torrent(torrent)
    return persistence


@pytest.fixture
def server(persistence_with_torrent):
    config = SeederConfig(
        internal_address="127.0.0.1",
        external_address="192.0.2.1",
        port=0,
        peer_workers=1,
        accept_poll_interval=0.05,
    )
    peer = SeedPeer(persistence_with_torrent, config, poll_interval=0.05)
    return SeedServer(
        peer,
        persistence_with_torrent,
        announce_interval=60,
        poll_interval=0.05,
    )


class TestAnnounce:
    """Tests for SeedServer.announce."""

    def test_announces_complete_record(self, server, persistence_with_torrent, torrent):
        assert server.announce() == 1

        record = persistence_with_torrent.get_announce(torrent.info_hash, server.peer.peer_id)
        assert record.status == AnnounceStatus.COMPLETE
        assert record.ip == "192.0.2.1"
        assert record.port == server.peer.port
        assert record.left == 0
        assert record.uploaded == 0
        assert record.downloaded == torrent.length
        assert record.expires_at == pytest.approx(time.time() + 60, abs=5)

    def test_counts_as_seeder_for_others(self, server, persistence_with_torrent, torrent):
        server.announce()
        stats = persistence_with_torrent.get_peer_stats(torrent.info_hash, b"x" * 20)
        assert stats.complete == 1

    def test_skips_inactive_torrents(self, server, persistence_with_torrent, torrent):
        persistence_with_torrent.deactivate_torrent(torrent.info_hash)
        assert server.announce() == 0

    def test_nothing_to_announce(self):
        persistence = InMemoryPersistence()
        server = SeedServer(SeedPeer(persistence), persistence)
        assert server.announce() == 0


class TestAnnounceLoop:
    """Tests for SeedServer.announce_loop."""

    def test_stops_on_flag(self, server, persistence_with_torrent, torrent):
        stop = threading.Event()
        thread = threading.Thread(target=server.announce_loop, args=(stop,))
        thread.start()

        deadline = time.monotonic() + 5
        while persistence_with_torrent.get_announce(torrent.info_hash, server.peer.peer_id) is None:
            assert time.monotonic() < deadline
            time.sleep(0.01)

        stop.set()
        thread.join(timeout=5)
        assert not thread.is_alive()

    def test_iteration_limit(self, persistence_with_torrent):
        server = SeedServer(
            SeedPeer(persistence_with_torrent),
            persistence_with_torrent,
            announce_interval=0,
            stop_after_iterations=3,
        )
        calls = []
        server.announce = lambda: calls.append(1) or 1
        server.announce_loop(threading.Event())
        assert len(calls) == 3


class TestSlots:
    """Tests for worker slot dispatch."""

    def test_two_guarded_slots(self, server):
        assert server.desired_worker_count() == 2
        assert server.is_guarded()

    def test_invalid_slot(self, server):
        with pytest.raises(SupervisorError, match="Invalid worker slot"):
            server.run_after_spawn(2, threading.Event())


class TestLifecycle:
    """Tests for start and terminate."""

    def test_start_and_terminate(self, server, persistence_with_torrent, torrent):
        thread = threading.Thread(
            target=server.start, kwargs={"install_signal_handlers": False}
        )
        thread.start()

        deadline = time.monotonic() + 5
        while persistence_with_torrent.get_announce(torrent.info_hash, server.peer.peer_id) is None:
            assert time.monotonic() < deadline
            time.sleep(0.01)
        assert server.peer.port != 0

        server.terminate()
        thread.join(timeout=10)
        assert not thread.is_alive()
        assert server.peer.listening_socket is None

    def test_terminate_before_start(self, server):
        server.terminate()
        thread = threading.Thread(
            target=server.start, kwargs={"install_signal_handlers": False}
        )
        thread.start()
        thread.join(timeout=10)
        assert not thread.is_alive()
