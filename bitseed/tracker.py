"""Tracker announce service.

Public entry points for creating ``.torrent`` files and answering
announce requests of BitTorrent clients. ``Tracker.announce`` never
raises: every failure is reported inside the Bencoded response.
"""

from __future__ import annotations

import logging
import re
import socket
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from bitseed.core.bencode import encode
from bitseed.core.torrent import Torrent
from bitseed.exceptions import EmptyAnnounceListError
from bitseed.logging_config import LoggingContext
from bitseed.models import AnnounceStatus

if TYPE_CHECKING:
    from bitseed.models import AnnouncedPeer
    from bitseed.persistence.base import Persistence

logger = logging.getLogger(__name__)

MANDATORY_KEYS = ("info_hash", "peer_id", "port", "uploaded", "downloaded", "left")
DEFAULT_PIECE_LENGTH = 262144
INTERNAL_ERROR_REASON = "Failed to announce because of internal server error."

_NON_NEGATIVE_INTEGER = re.compile(r"[0-9]+")


def is_non_negative_integer(value: Any) -> bool:
    """Tell if user input represents a non-negative integer."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    if isinstance(value, bytes):
        value = value.decode("latin-1")
    if isinstance(value, str):
        return _NON_NEGATIVE_INTEGER.fullmatch(value) is not None
    return False


def is_truthy(value: Any) -> bool:
    """Loose truthiness of a query flag: absent, empty and ``0`` are false."""
    if value is None:
        return False
    if isinstance(value, bytes):
        value = value.decode("latin-1")
    if isinstance(value, str):
        return value not in ("", "0")
    return bool(value)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, bytearray):
        return bytes(value)
    return str(value).encode("utf-8")


def _as_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return str(value)


def compact_peers(peers: Sequence[AnnouncedPeer]) -> bytes:
    """Pack peers as 6-byte big-endian ``(ipv4, port)`` tuples."""
    compact = bytearray()
    for peer in peers:
        try:
            compact.extend(socket.inet_aton(peer.ip))
        except OSError:
            logger.debug("Skipping non-IPv4 peer %s in compact response", peer)
            continue
        compact.extend(peer.port.to_bytes(2, "big"))
    return bytes(compact)


def announce_failure(message: str) -> bytes:
    """Bencoded announce failure message."""
    return encode({"failure reason": message})


class Tracker:
    """Creates torrents and answers announces against a persistence backend.

    The persistence backend has to be shared with the seed server so that
    torrents created here are served and announced there.
    """

    def __init__(self, persistence: Persistence):
        self.persistence = persistence

    def create_torrent(
        self,
        announce_urls: Sequence[str] | str,
        file_path: str | Path,
        piece_length: int = DEFAULT_PIECE_LENGTH,
        name: str | None = None,
    ) -> bytes:
        """Register a file and return the contents of its ``.torrent`` file.

        Args:
            announce_urls: Announce URL or ordered list of URLs
            file_path: Path of the file to share; it is opened and hashed
            piece_length: Bytes per piece, normally a power of 2
            name: Display name overriding the file's base name

        Raises:
            EmptyAnnounceListError: When the announce list is empty.

        """
        if isinstance(announce_urls, str):
            announce_urls = [announce_urls]
        announce_urls = list(announce_urls)
        if not announce_urls:
            msg = "Empty announce list!"
            raise EmptyAnnounceListError(msg)

        torrent = Torrent.from_file(file_path, piece_length, name=name)
        try:
            # Pieces are hashed on first access.
            with LoggingContext("torrent creation", logger, path=str(file_path)):
                info_hash = torrent.info_hash
            self.persistence.save_torrent(torrent)
            logger.info(
                "Registered torrent %s (%s, %d bytes)",
                info_hash.hex(),
                torrent.name,
                torrent.length,
            )
            return torrent.to_torrent_file(announce_urls)
        finally:
            torrent.close()

    def announce(self, params: Mapping[str, Any], remote_ip: str, interval: int) -> bytes:
        """Announce a peer and build the Bencoded response for the client.

        Args:
            params: Query parameters sent by the peer
            remote_ip: Transport-level address of the peer
            interval: Desired interval between future announces in seconds

        """
        try:
            return self._announce(params, remote_ip, interval)
        except Exception:
            logger.exception("Failure while announcing")
            return announce_failure(INTERNAL_ERROR_REASON)

    def _announce(self, params: Mapping[str, Any], remote_ip: str, interval: int) -> bytes:
        missing = [key for key in MANDATORY_KEYS if key not in params]
        if missing:
            return announce_failure("Invalid get parameters; Missing: " + ", ".join(missing))

        # The client may override its address.
        ip = _as_text(params["ip"]) if "ip" in params else remote_ip
        event = _as_text(params.get("event", ""))
        compact = is_truthy(params.get("compact"))
        no_peer_id = is_truthy(params.get("no_peer_id"))

        info_hash = _as_bytes(params["info_hash"])
        peer_id = _as_bytes(params["peer_id"])
        if len(info_hash) != 20:
            return announce_failure("Invalid length of info_hash.")
        if len(peer_id) != 20:
            return announce_failure("Invalid length of peer_id.")
        for key in ("port", "uploaded", "downloaded", "left"):
            if not is_non_negative_integer(params[key]):
                return announce_failure(f"Invalid {key} value.")

        port = int(params["port"])
        if port > 65535:
            return announce_failure("Invalid port value.")
        uploaded = int(params["uploaded"])
        downloaded = int(params["downloaded"])
        left = int(params["left"])

        status = None
        if event == "completed" or left == 0:
            status = AnnounceStatus.COMPLETE
        # A gracefully leaving client expires at once.
        ttl = 0 if event == "stopped" else interval * 2

        self.persistence.save_announce(
            info_hash,
            peer_id,
            ip,
            port,
            downloaded=downloaded,
            uploaded=uploaded,
            left=left,
            status=status,
            ttl=ttl,
        )

        peers = self.persistence.get_peers(info_hash, peer_id)
        if compact:
            peer_list: Any = compact_peers(peers)
        elif no_peer_id:
            peer_list = [{"ip": peer.ip, "port": peer.port} for peer in peers]
        else:
            peer_list = [
                {"peer id": peer.peer_id, "ip": peer.ip, "port": peer.port} for peer in peers
            ]

        stats = self.persistence.get_peer_stats(info_hash, peer_id)
        logger.debug(
            "Announce %s from %s:%d event=%r: %d peers",
            info_hash.hex(),
            ip,
            port,
            event,
            len(peers),
        )

        return encode(
            {
                "interval": interval,
                "complete": stats.complete,
                "incomplete": stats.incomplete,
                "peers": peer_list,
            }
        )
