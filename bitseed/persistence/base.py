"""Storage boundary used by the tracker and the seeder.

Backends must be safe to use from every worker thread at once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bitseed.core.torrent import Torrent
    from bitseed.models import (
        AnnouncedPeer,
        AnnounceStatus,
        PeerStats,
        TorrentSummary,
    )

# Time-to-live used when an announce does not specify one: one year.
DEFAULT_TTL = 365 * 24 * 60 * 60


class Persistence(ABC):
    """Abstract persistence backend."""

    @abstractmethod
    def save_torrent(self, torrent: Torrent) -> None:
        """Insert or update a torrent, marking it active."""

    @abstractmethod
    def get_torrent(self, info_hash: bytes) -> Torrent | None:
        """Rehydrate an active torrent by info hash."""

    @abstractmethod
    def deactivate_torrent(self, info_hash: bytes) -> bool:
        """Stop serving and announcing a torrent. Returns whether it existed."""

    @abstractmethod
    def save_announce(
        self,
        info_hash: bytes,
        peer_id: bytes,
        ip: str,
        port: int,
        downloaded: int,
        uploaded: int,
        left: int,
        status: AnnounceStatus | None = None,
        ttl: int | None = None,
    ) -> None:
        """Upsert the announce of ``peer_id`` for ``info_hash``.

        A ``None`` status keeps the stored one, so ``complete`` is never
        downgraded. ``ttl=0`` stores an already expired record; ``None``
        falls back to ``DEFAULT_TTL``.
        """

    @abstractmethod
    def get_all_info_hashes(self) -> list[TorrentSummary]:
        """List info hash and length of every active torrent."""

    @abstractmethod
    def get_peers(self, info_hash: bytes, exclude_peer_id: bytes) -> list[AnnouncedPeer]:
        """Non-expired peers of a torrent, except ``exclude_peer_id``."""

    @abstractmethod
    def get_peer_stats(self, info_hash: bytes, exclude_peer_id: bytes) -> PeerStats:
        """Complete/incomplete counts over non-expired peers, except ``exclude_peer_id``."""

    def close(self) -> None:  # noqa: B027
        """Release backend resources."""


class ResetAfterSpawn(ABC):
    """Capability of backends that hold live connections.

    ``reset_after_spawn`` is invoked once at the start of every freshly
    spawned worker.
    """

    @abstractmethod
    def reset_after_spawn(self) -> None:
        """Open fresh connections for the calling worker."""


def reset_if_needed(persistence: Persistence) -> None:
    """Call ``reset_after_spawn`` on backends that support it."""
    if isinstance(persistence, ResetAfterSpawn):
        persistence.reset_after_spawn()
