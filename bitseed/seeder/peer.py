"""Seed peer: the peer wire protocol engine behind a supervised accept loop.

Each worker accepts connections from the shared listening socket and
serves them one at a time: handshake, full bitfield, unchoke, then
blocks for every ``request`` until the peer goes away.
"""

from __future__ import annotations

import hashlib
import socket
import threading
from typing import TYPE_CHECKING

from bitseed.concurrency.supervisor import ConcurrentUnit, Supervisor
from bitseed.exceptions import (
    BitseedError,
    BlockReadError,
    FileSystemError,
    NetworkError,
    SocketError,
)
from bitseed.logging_config import get_logger, log_exception, set_correlation_id
from bitseed.models import MessageType, SeederConfig
from bitseed.persistence.base import reset_if_needed
from bitseed.seeder.client import PeerClient
from bitseed.seeder.protocol import (
    CONTINUE,
    REQUEST_PAYLOAD_LENGTH,
    BitfieldMessage,
    CloseConnection,
    Handshake,
    Outcome,
    PieceMessage,
    RequestMessage,
    UnchokeMessage,
)

if TYPE_CHECKING:
    from bitseed.persistence.base import Persistence

logger = get_logger(__name__)

PEER_ID_PREFIX = b"-BS0001-"

# Message types whose payload is read and dropped.
IGNORED_MESSAGES = frozenset(
    {
        MessageType.CHOKE,
        MessageType.UNCHOKE,
        MessageType.INTERESTED,
        MessageType.NOT_INTERESTED,
        MessageType.HAVE,
        MessageType.BITFIELD,
        MessageType.PIECE,
        MessageType.CANCEL,
    }
)


def generate_peer_id(external_address: str, port: int) -> bytes:
    """20-byte peer id derived from the announced address and port."""
    digest = hashlib.sha1(f"{external_address}{port}".encode()).digest()
    return PEER_ID_PREFIX + digest[: 20 - len(PEER_ID_PREFIX)]


class SeedPeer(ConcurrentUnit):
    """Seeds every active torrent of the persistence backend."""

    def __init__(
        self,
        persistence: Persistence,
        config: SeederConfig | None = None,
        poll_interval: float = 0.5,
        restart_delay: float = 0.0,
    ):
        config = config or SeederConfig()
        self.persistence = persistence
        self.external_address = config.external_address
        self.internal_address = config.internal_address
        self.port = config.port
        self.peer_workers = config.peer_workers
        self.seeders_stop_seeding = config.seeders_stop_seeding
        self.stop_after_iterations = config.stop_after_iterations
        self.listen_backlog = config.listen_backlog
        self.accept_poll_interval = config.accept_poll_interval
        self.read_timeout = config.read_timeout
        self.poll_interval = poll_interval
        self.restart_delay = restart_delay

        self.peer_id = generate_peer_id(self.external_address, self.port)
        self.listening_socket: socket.socket | None = None
        self.supervisor: Supervisor | None = None

    def set_external_address(self, external_address: str) -> SeedPeer:
        self.external_address = external_address
        self.peer_id = generate_peer_id(self.external_address, self.port)
        return self

    def set_internal_address(self, internal_address: str) -> SeedPeer:
        self.internal_address = internal_address
        return self

    def set_port(self, port: int) -> SeedPeer:
        self.port = port
        self.peer_id = generate_peer_id(self.external_address, self.port)
        return self

    def set_peer_workers(self, peer_workers: int) -> SeedPeer:
        self.peer_workers = peer_workers
        return self

    def set_seeders_stop_seeding(self, seeders_stop_seeding: int) -> SeedPeer:
        self.seeders_stop_seeding = seeders_stop_seeding
        return self

    def desired_worker_count(self) -> int:
        return self.peer_workers

    def is_guarded(self) -> bool:
        return True

    def start_listening(self) -> socket.socket:
        """Bind the listening socket shared by every worker.

        With ``port`` 0 the OS picks a port; ``port`` is updated to it.
        """
        if self.listening_socket is not None:
            return self.listening_socket
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.internal_address, self.port))
            sock.listen(self.listen_backlog)
        except OSError as e:
            msg = f"Failed to listen on {self.internal_address}:{self.port}: {e}"
            raise SocketError(msg) from e

        # Accept wakes up periodically so workers notice their stop flag.
        sock.settimeout(self.accept_poll_interval)
        if self.port == 0:
            self.set_port(sock.getsockname()[1])
        self.listening_socket = sock
        logger.info("Seed peer listening on %s:%d", self.internal_address, self.port)
        return sock

    def stop_listening(self) -> None:
        if self.listening_socket is not None:
            self.listening_socket.close()
            self.listening_socket = None

    def start(self, stop: threading.Event | None = None) -> None:
        """Listen and supervise the accept loops until ``stop`` is set."""
        self.start_listening()
        self.supervisor = Supervisor(
            self,
            shutdown_event=stop,
            poll_interval=self.poll_interval,
            restart_delay=self.restart_delay,
            name="SeedPeer",
        )
        try:
            self.supervisor.run()
        finally:
            self.stop_listening()

    def run_after_spawn(self, slot: int, stop: threading.Event) -> None:
        reset_if_needed(self.persistence)
        logger.info("Worker on slot %d starts accepting connections", slot)
        self.communication_loop(stop)

    def communication_loop(self, stop: threading.Event) -> None:
        """Serve connections until ``stop`` or the iteration limit."""
        sock = self.start_listening()
        iterations = 0
        while iterations < self.stop_after_iterations and not stop.is_set():
            try:
                conn, address = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if stop.is_set():
                    break
                msg = f"Socket accept failed: {e}"
                raise SocketError(msg) from e

            iterations += 1
            conn.settimeout(self.read_timeout)
            self.serve(PeerClient(conn, address))

        if iterations >= self.stop_after_iterations:
            logger.info("Seeder worker restarts after %d connections", iterations)

    def serve(self, client: PeerClient) -> str:
        """Run one connection to completion and return the close reason."""
        set_correlation_id()
        with client:
            outcome: Outcome = CONTINUE
            while not isinstance(outcome, CloseConnection):
                try:
                    if client.peer_id is None:
                        outcome = self.shake_hand(client)
                        if not isinstance(outcome, CloseConnection):
                            # Full availability, then permission to request.
                            self.send_bitfield(client)
                            client.send(UnchokeMessage())
                            client.choked = False
                    else:
                        outcome = self.answer(client)
                except NetworkError as e:
                    outcome = CloseConnection(e.message)
                except BitseedError as e:
                    log_exception(logger, e, f"Cannot serve {client}")
                    outcome = CloseConnection(e.message)

            logger.info(
                "Closing connection with %s, reason: %r. Stats: %s",
                client,
                outcome.reason,
                client.stats(),
            )
        return outcome.reason

    def shake_hand(self, client: PeerClient) -> Outcome:
        protocol_length = client.read(1)[0]
        protocol = client.read(protocol_length)
        if protocol != Handshake.PROTOCOL_STRING:
            logger.error(
                "Client tries to connect with unsupported protocol: %r",
                protocol[:100],
            )
            return CloseConnection("Unsupported protocol.")

        client.read(8)  # reserved
        info_hash = client.read(20)
        peer_id = client.read(20)

        try:
            torrent = self.persistence.get_torrent(info_hash)
        except FileSystemError as e:
            log_exception(logger, e, f"Cannot open torrent {info_hash.hex()} for {client}")
            return CloseConnection("Torrent file unavailable.")
        if torrent is None:
            return CloseConnection("Unknown info hash.")
        client.torrent = torrent

        if self.seeders_stop_seeding > 0:
            stats = self.persistence.get_peer_stats(info_hash, self.peer_id)
            if stats.complete >= self.seeders_stop_seeding:
                logger.info(
                    "External seeder limit (%d) reached for info hash %s, stopping seeding",
                    self.seeders_stop_seeding,
                    info_hash.hex(),
                )
                return CloseConnection("Stop seeding, we have others to seed.")

        client.peer_id = peer_id
        client.write(Handshake(info_hash, self.peer_id).encode())
        logger.info("Handshake completed with %s, info hash: %s", client, info_hash.hex())
        return CONTINUE

    def answer(self, client: PeerClient) -> Outcome:
        """Handle one incoming message."""
        message_length = int.from_bytes(client.read(4), "big")
        if message_length == 0:
            return CONTINUE  # keep-alive

        message_type = client.read(1)[0]
        payload_length = message_length - 1

        if message_type == MessageType.REQUEST:
            if payload_length != REQUEST_PAYLOAD_LENGTH:
                logger.error(
                    "Protocol violation from %s: request payload of %d bytes",
                    client,
                    payload_length,
                )
                return CloseConnection("Protocol violation, malformed request.")
            request = RequestMessage.from_payload(client.read(payload_length))
            return self.send_block(client, request.piece_index, request.begin, request.length)

        if message_type in IGNORED_MESSAGES:
            # Seeding only, nothing to act on.
            client.discard(payload_length)
            return CONTINUE

        logger.error("Protocol violation from %s: message type %d", client, message_type)
        return CloseConnection("Protocol violation, unsupported message.")

    def send_block(
        self,
        client: PeerClient,
        piece_index: int,
        block_begin: int,
        length: int,
    ) -> Outcome:
        try:
            block = client.torrent.read_block(piece_index, block_begin, length)
        except BlockReadError as e:
            logger.error("Invalid block request from %s: %s", client, e.message)
            return CloseConnection(e.message)
        except FileSystemError as e:
            log_exception(logger, e, f"Cannot read block for {client}")
            return CloseConnection(e.message)

        client.send(PieceMessage(piece_index, block_begin, block))
        client.add_data_sent(len(block))
        return CONTINUE

    def send_bitfield(self, client: PeerClient) -> None:
        client.send(BitfieldMessage.full(client.torrent.piece_count))
