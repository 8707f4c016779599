"""In-process persistence backend.

Holds torrents and announces in dictionaries guarded by a lock. Suitable
for tests and for running the tracker and the seeder in one process.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from bitseed.core.torrent import Torrent
from bitseed.models import (
    AnnouncedPeer,
    AnnounceRecord,
    AnnounceStatus,
    PeerStats,
    TorrentSummary,
)
from bitseed.persistence.base import DEFAULT_TTL, Persistence


@dataclass
class _TorrentRow:
    info_hash: bytes
    length: int
    size_piece: int
    pieces: bytes
    name: str
    path: str
    active: bool = True


class InMemoryPersistence(Persistence):
    """Thread-safe dictionary backed store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._torrents: dict[bytes, _TorrentRow] = {}
        # info_hash -> {peer_id -> record}
        self._announces: dict[bytes, dict[bytes, AnnounceRecord]] = {}

    def save_torrent(self, torrent: Torrent) -> None:
        row = _TorrentRow(
            info_hash=torrent.info_hash,
            length=torrent.length,
            size_piece=torrent.size_piece,
            pieces=torrent.pieces,
            name=torrent.name,
            path=torrent.file_path,
        )
        with self._lock:
            self._torrents[row.info_hash] = row

    def get_torrent(self, info_hash: bytes) -> Torrent | None:
        with self._lock:
            row = self._torrents.get(info_hash)
        if row is None or not row.active:
            return None
        return Torrent.rehydrate(
            row.path,
            row.size_piece,
            name=row.name,
            length=row.length,
            pieces=row.pieces,
            info_hash=row.info_hash,
        )

    def deactivate_torrent(self, info_hash: bytes) -> bool:
        with self._lock:
            row = self._torrents.get(info_hash)
            if row is None:
                return False
            row.active = False
            return True

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
        if ttl is None:
            ttl = DEFAULT_TTL
        expires_at = time.time() + ttl

        with self._lock:
            peers = self._announces.setdefault(info_hash, {})
            previous = peers.get(peer_id)
            if status is None:
                status = previous.status if previous else AnnounceStatus.INCOMPLETE
            elif previous is not None and previous.status == AnnounceStatus.COMPLETE:
                status = AnnounceStatus.COMPLETE
            peers[peer_id] = AnnounceRecord(
                info_hash=info_hash,
                peer_id=peer_id,
                ip=ip,
                port=port,
                downloaded=downloaded,
                uploaded=uploaded,
                left=left,
                status=status,
                expires_at=expires_at,
            )

    def get_all_info_hashes(self) -> list[TorrentSummary]:
        with self._lock:
            return [
                TorrentSummary(info_hash=row.info_hash, length=row.length)
                for row in self._torrents.values()
                if row.active
            ]

    def get_peers(self, info_hash: bytes, exclude_peer_id: bytes) -> list[AnnouncedPeer]:
        return [
            AnnouncedPeer(peer_id=record.peer_id, ip=record.ip, port=record.port)
            for record in self._live_records(info_hash, exclude_peer_id)
        ]

    def get_peer_stats(self, info_hash: bytes, exclude_peer_id: bytes) -> PeerStats:
        stats = PeerStats()
        for record in self._live_records(info_hash, exclude_peer_id):
            if record.status == AnnounceStatus.COMPLETE:
                stats.complete += 1
            else:
                stats.incomplete += 1
        return stats

    def get_announce(self, info_hash: bytes, peer_id: bytes) -> AnnounceRecord | None:
        """Stored record, expired or not."""
        with self._lock:
            return self._announces.get(info_hash, {}).get(peer_id)

    def _live_records(self, info_hash: bytes, exclude_peer_id: bytes) -> list[AnnounceRecord]:
        now = time.time()
        with self._lock:
            return [
                record
                for peer_id, record in self._announces.get(info_hash, {}).items()
                if peer_id != exclude_peer_id and not record.is_expired(now)
            ]
