"""SQLite persistence backend.

Every worker thread talks to the database through its own connection;
``reset_after_spawn`` replaces the calling thread's connection.
"""

from __future__ import annotations

import ipaddress
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from bitseed.core.torrent import Torrent
from bitseed.exceptions import PersistenceError
from bitseed.models import AnnouncedPeer, AnnounceStatus, PeerStats, TorrentSummary
from bitseed.persistence.base import DEFAULT_TTL, Persistence, ResetAfterSpawn

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS bitseed_torrents (
        info_hash BLOB PRIMARY KEY,
        length INTEGER NOT NULL,
        pieces_length INTEGER NOT NULL,
        pieces BLOB NOT NULL,
        name TEXT NOT NULL,
        path TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'active'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bitseed_peers (
        info_hash BLOB NOT NULL,
        peer_id BLOB NOT NULL,
        ip_address TEXT NOT NULL,
        port INTEGER NOT NULL,
        bytes_downloaded INTEGER NOT NULL,
        bytes_uploaded INTEGER NOT NULL,
        bytes_left INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'incomplete',
        expires REAL,
        PRIMARY KEY (info_hash, peer_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_peers_expires ON bitseed_peers(info_hash, expires)
    """,
)


class SqlitePersistence(Persistence, ResetAfterSpawn):
    """Persistence backed by a SQLite database file.

    ``":memory:"`` keeps a single shared connection guarded by a lock,
    since every new connection to it would see an empty database.
    """

    def __init__(self, database: str | Path = MEMORY_DATABASE):
        self.database = str(database)
        self._local = threading.local()
        self._lock = threading.RLock()
        self._shared: sqlite3.Connection | None = None
        if self.database != MEMORY_DATABASE:
            Path(self.database).parent.mkdir(parents=True, exist_ok=True)
        self._init_database(self._connection())

    def _connect(self) -> sqlite3.Connection:
        db = sqlite3.connect(
            self.database,
            timeout=30.0,
            check_same_thread=self.database != MEMORY_DATABASE,
            isolation_level=None,
        )
        db.row_factory = sqlite3.Row
        if self.database != MEMORY_DATABASE:
            db.execute("PRAGMA journal_mode=WAL")
        return db

    def _connection(self) -> sqlite3.Connection:
        if self.database == MEMORY_DATABASE:
            if self._shared is None:
                self._shared = self._connect()
            return self._shared
        db = getattr(self._local, "db", None)
        if db is None:
            db = self._connect()
            self._local.db = db
        return db

    def _init_database(self, db: sqlite3.Connection) -> None:
        with self._lock:
            for statement in SCHEMA:
                db.execute(statement)

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        """Serialize access and report driver failures as ``PersistenceError``."""
        with self._lock:
            try:
                yield self._connection()
            except sqlite3.Error as e:
                msg = f"Database operation on {self.database} failed: {e}"
                raise PersistenceError(msg) from e

    def reset_after_spawn(self) -> None:
        if self.database == MEMORY_DATABASE:
            return
        db = getattr(self._local, "db", None)
        if db is not None:
            db.close()
        self._local.db = self._connect()
        logger.debug("Opened a fresh database connection to %s", self.database)

    def close(self) -> None:
        db = getattr(self._local, "db", None)
        if db is not None:
            db.close()
            self._local.db = None
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    def save_torrent(self, torrent: Torrent) -> None:
        with self._locked() as db:
            db.execute(
                """
                INSERT INTO bitseed_torrents
                    (info_hash, length, pieces_length, pieces, name, path, status)
                VALUES (?, ?, ?, ?, ?, ?, 'active')
                ON CONFLICT(info_hash) DO UPDATE SET
                    length = excluded.length,
                    pieces_length = excluded.pieces_length,
                    pieces = excluded.pieces,
                    name = excluded.name,
                    path = excluded.path,
                    status = 'active'
                """,
                (
                    torrent.info_hash,
                    torrent.length,
                    torrent.size_piece,
                    torrent.pieces,
                    torrent.name,
                    torrent.file_path,
                ),
            )

    def get_torrent(self, info_hash: bytes) -> Torrent | None:
        with self._locked() as db:
            row = db.execute(
                """
                SELECT info_hash, length, pieces_length, pieces, name, path
                FROM bitseed_torrents
                WHERE info_hash = ? AND status = 'active'
                """,
                (info_hash,),
            ).fetchone()

        if row is None:
            return None
        return Torrent.rehydrate(
            row["path"],
            row["pieces_length"],
            name=row["name"],
            length=row["length"],
            pieces=row["pieces"],
            info_hash=row["info_hash"],
        )

    def deactivate_torrent(self, info_hash: bytes) -> bool:
        with self._locked() as db:
            cursor = db.execute(
                "UPDATE bitseed_torrents SET status = 'inactive' WHERE info_hash = ?",
                (info_hash,),
            )
        return cursor.rowcount > 0

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
        expires = time.time() + ttl
        status_value = status.value if status is not None else None

        with self._locked() as db:
            # A stored 'complete' always wins over the incoming status.
            db.execute(
                """
                INSERT INTO bitseed_peers
                    (info_hash, peer_id, ip_address, port, bytes_downloaded,
                     bytes_uploaded, bytes_left, status, expires)
                VALUES (?, ?, ?, ?, ?, ?, ?, COALESCE(?, 'incomplete'), ?)
                ON CONFLICT(info_hash, peer_id) DO UPDATE SET
                    ip_address = excluded.ip_address,
                    port = excluded.port,
                    bytes_downloaded = excluded.bytes_downloaded,
                    bytes_uploaded = excluded.bytes_uploaded,
                    bytes_left = excluded.bytes_left,
                    status = CASE
                        WHEN bitseed_peers.status = 'complete' THEN 'complete'
                        ELSE COALESCE(?, bitseed_peers.status)
                    END,
                    expires = excluded.expires
                """,
                (
                    info_hash,
                    peer_id,
                    _normalize_ip(ip),
                    int(port),
                    int(downloaded),
                    int(uploaded),
                    int(left),
                    status_value,
                    expires,
                    status_value,
                ),
            )

    def get_all_info_hashes(self) -> list[TorrentSummary]:
        with self._locked() as db:
            rows = db.execute(
                "SELECT info_hash, length FROM bitseed_torrents WHERE status = 'active'"
            ).fetchall()
        return [TorrentSummary(info_hash=row["info_hash"], length=row["length"]) for row in rows]

    def get_peers(self, info_hash: bytes, exclude_peer_id: bytes) -> list[AnnouncedPeer]:
        with self._locked() as db:
            rows = db.execute(
                """
                SELECT peer_id, ip_address, port
                FROM bitseed_peers
                WHERE info_hash = ? AND peer_id != ?
                    AND (expires IS NULL OR expires > ?)
                """,
                (info_hash, exclude_peer_id, time.time()),
            ).fetchall()
        return [
            AnnouncedPeer(peer_id=row["peer_id"], ip=row["ip_address"], port=row["port"])
            for row in rows
        ]

    def get_peer_stats(self, info_hash: bytes, exclude_peer_id: bytes) -> PeerStats:
        with self._locked() as db:
            row = db.execute(
                """
                SELECT
                    COALESCE(SUM(status = 'complete'), 0) AS complete,
                    COALESCE(SUM(status != 'complete'), 0) AS incomplete
                FROM bitseed_peers
                WHERE info_hash = ? AND peer_id != ?
                    AND (expires IS NULL OR expires > ?)
                """,
                (info_hash, exclude_peer_id, time.time()),
            ).fetchone()
        return PeerStats(complete=row["complete"], incomplete=row["incomplete"])


def _normalize_ip(ip: str) -> str:
    """Canonical textual form of an IP address; other strings are kept as-is."""
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError:
        return ip
