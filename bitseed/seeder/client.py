"""One accepted peer connection with byte counters."""

from __future__ import annotations

import contextlib
import socket
from typing import TYPE_CHECKING

from bitseed.exceptions import PeerDisconnectedError, SocketError

if TYPE_CHECKING:
    from bitseed.core.torrent import Torrent
    from bitseed.seeder.protocol import PeerMessage

# Largest single recv() call.
READ_CHUNK_SIZE = 2048


class PeerClient:
    """Socket of an accepted peer plus the state the seeder keeps for it.

    ``peer_id`` stays ``None`` until the handshake is done.
    """

    def __init__(self, sock: socket.socket, address: tuple | None = None):
        self.sock = sock
        if address is None:
            try:
                address = sock.getpeername()
            except OSError:
                address = None
        if isinstance(address, tuple) and len(address) >= 2:
            self.address, self.port = address[0], address[1]
        else:
            self.address, self.port = None, None

        self.peer_id: bytes | None = None
        self.torrent: Torrent | None = None
        self.choked = True

        self.bytes_sent = 0
        self.bytes_received = 0
        self.data_sent = 0

    def __enter__(self) -> PeerClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def read(self, expected_length: int) -> bytes:
        """Read exactly ``expected_length`` bytes.

        Raises:
            PeerDisconnectedError: If the peer closes the connection first
            SocketError: If the socket fails or times out
        """
        chunks = []
        remaining = expected_length
        while remaining > 0:
            try:
                buffer = self.sock.recv(min(remaining, READ_CHUNK_SIZE))
            except socket.timeout as e:
                msg = "Socket read timed out."
                raise SocketError(msg) from e
            except OSError as e:
                msg = f"Socket reading failed: {e}"
                raise SocketError(msg) from e
            if not buffer:
                msg = "Client closed the connection."
                raise PeerDisconnectedError(msg)
            chunks.append(buffer)
            remaining -= len(buffer)

        self.bytes_received += expected_length
        return b"".join(chunks)

    def discard(self, length: int) -> None:
        """Read and drop ``length`` bytes without holding them all in memory."""
        while length > 0:
            step = min(length, READ_CHUNK_SIZE)
            self.read(step)
            length -= step

    def write(self, data: bytes) -> None:
        try:
            self.sock.sendall(data)
        except OSError as e:
            msg = f"Socket writing failed: {e}"
            raise SocketError(msg) from e
        self.bytes_sent += len(data)

    def send(self, message: PeerMessage) -> None:
        self.write(message.encode())

    def add_data_sent(self, length: int) -> None:
        self.data_sent += length

    def stats(self) -> str:
        return (
            f"Bytes sent: {self.bytes_sent}, "
            f"Bytes received: {self.bytes_received}, "
            f"Data sent: {self.data_sent}"
        )

    def close(self) -> None:
        if self.torrent is not None:
            self.torrent.close()
            self.torrent = None
        with contextlib.suppress(OSError):
            self.sock.close()

    def __str__(self) -> str:
        peer_id = self.peer_id.hex() if self.peer_id else "-"
        return f"peer {peer_id} at {self.address}:{self.port}"
