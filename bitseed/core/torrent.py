"""Torrent metadata for one shared file.

This module builds piece-hashed metadata, the canonical ``.torrent``
dictionary and the info hash as required by the BitTorrent protocol, and
addresses blocks of the shared file for the seeder.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bitseed.core.bencode import encode
from bitseed.core.file import SeedFile
from bitseed.exceptions import (
    BlockReadError,
    EmptyAnnounceListError,
    InvalidPieceSizeError,
    InvalidTorrentAttributeError,
)

DIGEST_LENGTH = 20


def _validate_piece_size(size_piece: Any) -> int:
    if isinstance(size_piece, bool):
        msg = f"Invalid piece size: {size_piece!r}"
        raise InvalidPieceSizeError(msg)
    try:
        value = int(size_piece)
    except (TypeError, ValueError) as e:
        msg = f"Invalid piece size: {size_piece!r}"
        raise InvalidPieceSizeError(msg) from e
    if value <= 0:
        msg = f"Invalid piece size: {value}"
        raise InvalidPieceSizeError(msg)
    return value


class Torrent:
    """Metadata of a single-file torrent.

    Only the file and the piece size are required. ``length``, ``name``,
    ``pieces``, ``file_path`` and ``info_hash`` are computed from the file
    on first access and cached for the lifetime of the object, unless
    they were supplied up front (rehydration from persistence).
    """

    ATTRIBUTES = ("size_piece", "length", "name", "pieces", "file_path", "info_hash")

    def __init__(
        self,
        file: SeedFile,
        size_piece: int,
        *,
        file_path: str | None = None,
        name: str | None = None,
        length: int | None = None,
        pieces: bytes | None = None,
        info_hash: bytes | None = None,
    ):
        self._size_piece = _validate_piece_size(size_piece)
        self._file = file

        self._length = None if length is None else int(length)
        self._name = name
        self._file_path = file_path
        self._pieces = None if pieces is None else bytes(pieces)
        self._info_hash = None if info_hash is None else bytes(info_hash)

    @classmethod
    def from_file(
        cls,
        file: SeedFile | str | Path,
        size_piece: int,
        name: str | None = None,
    ) -> Torrent:
        """Create metadata for a newly registered file.

        Args:
            file: File capability or path of the file to share
            size_piece: Bytes per piece, a positive integer
            name: Display name overriding the file's base name

        """
        if not isinstance(file, SeedFile):
            file = SeedFile(file)
        return cls(file, size_piece, name=name)

    @classmethod
    def rehydrate(
        cls,
        file_path: str | Path,
        size_piece: int,
        *,
        name: str,
        length: int,
        pieces: bytes,
        info_hash: bytes,
    ) -> Torrent:
        """Rebuild a torrent from persisted attributes without hashing the file."""
        return cls(
            SeedFile(file_path),
            size_piece,
            file_path=str(file_path),
            name=name,
            length=length,
            pieces=pieces,
            info_hash=info_hash,
        )

    @property
    def size_piece(self) -> int:
        return self._size_piece

    @property
    def length(self) -> int:
        if self._length is None:
            self._length = self._file.size()
        return self._length

    @property
    def name(self) -> str:
        if self._name is None:
            self._name = self._file.basename()
        return self._name

    @property
    def file_path(self) -> str:
        if self._file_path is None:
            self._file_path = str(self._file)
        return self._file_path

    @property
    def pieces(self) -> bytes:
        """Concatenated 20-byte SHA-1 digests of every piece."""
        if self._pieces is None:
            self._pieces = self._file.hash_pieces(self._size_piece)
        return self._pieces

    @property
    def info_hash(self) -> bytes:
        """SHA-1 digest of the Bencoded info dictionary."""
        if self._info_hash is None:
            self._info_hash = hashlib.sha1(encode(self.info_dict())).digest()
        return self._info_hash

    @property
    def piece_count(self) -> int:
        return math.ceil(self.length / self._size_piece)

    def get(self, attribute: str) -> Any:
        """Access an attribute by name.

        Raises:
            InvalidTorrentAttributeError: For names that are not torrent attributes.

        """
        if attribute not in self.ATTRIBUTES:
            msg = f"Can't access attribute {attribute} of {type(self).__name__}"
            raise InvalidTorrentAttributeError(msg)
        return getattr(self, attribute)

    def info_dict(self) -> dict[str, Any]:
        """The four-key info dictionary the info hash is computed over."""
        return {
            "piece length": self._size_piece,
            "pieces": self.pieces,
            "name": self.name,
            "length": self.length,
        }

    def to_torrent_file(self, announce_urls: Sequence[str] | str) -> bytes:
        """Build the Bencoded ``.torrent`` file.

        Args:
            announce_urls: Ordered announce URLs; the first one is the
                primary ``announce`` entry, each one becomes a tier of
                ``announce-list``.

        Raises:
            EmptyAnnounceListError: If no URL is given.

        """
        if isinstance(announce_urls, str):
            announce_urls = [announce_urls]
        announce_urls = list(announce_urls)
        if not announce_urls:
            msg = "Empty announce list!"
            raise EmptyAnnounceListError(msg)

        return encode(
            {
                "announce": announce_urls[0],
                "announce-list": [[url] for url in announce_urls],
                "info": self.info_dict(),
            }
        )

    def read_block(self, piece_index: int, block_begin: int, length: int) -> bytes:
        """Read one block of a piece.

        Raises:
            BlockReadError: If the block lies outside the torrent's pieces.

        """
        if piece_index < 0 or piece_index > self.piece_count - 1:
            msg = f"Invalid piece index: {piece_index}"
            raise BlockReadError(msg)
        if block_begin < 0 or length < 0 or block_begin + length > self._size_piece:
            msg = f"Invalid block boundary: {block_begin}, {length}"
            raise BlockReadError(msg)
        offset = piece_index * self._size_piece + block_begin
        if offset + length > self.length:
            msg = f"Block beyond end of file: {block_begin}, {length}"
            raise BlockReadError(msg)

        return self._file.read_range(offset, length)

    def close(self) -> None:
        """Release the file handle."""
        self._file.close()

    def __repr__(self) -> str:
        return f"Torrent(name={self.name!r}, size_piece={self._size_piece})"
