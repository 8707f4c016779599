"""Read-only access to the single file shared by a torrent."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import BinaryIO

from bitseed.exceptions import FileNotExistsError, UnreadableFileError

HASH_CHUNK_SIZE = 64 * 1024


class SeedFile:
    """File capability used by the torrent metadata engine.

    The read handle is opened lazily and kept until ``close()``.
    """

    def __init__(self, path: str | Path):
        path = Path(path)
        if not path.exists():
            msg = f"File {path} does not exist."
            raise FileNotExistsError(msg, {"path": str(path)})
        self.path = path.resolve()
        self._handle: BinaryIO | None = None

    def __str__(self) -> str:
        return str(self.path)

    def __enter__(self) -> SeedFile:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def size(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError as e:
            msg = f"File {self} is unreadable."
            raise UnreadableFileError(msg) from e

    def basename(self) -> str:
        return self.path.name

    def read_range(self, offset: int, length: int) -> bytes:
        """Read ``length`` bytes starting at absolute ``offset``.

        Raises:
            UnreadableFileError: If the file cannot be opened or read.

        """
        handle = self._read_handle()
        try:
            handle.seek(offset)
            return handle.read(length)
        except OSError as e:
            msg = f"File {self} is unreadable."
            raise UnreadableFileError(msg) from e

    def hash_pieces(self, piece_size: int) -> bytes:
        """Return the concatenated SHA-1 digests of every piece, in order.

        The last piece is the remainder of the file and may be shorter.
        """
        if piece_size <= 0:
            msg = f"Invalid piece size: {piece_size}"
            raise ValueError(msg)

        handle = self._read_handle()
        digests = []
        try:
            handle.seek(0)
            while True:
                piece_hash = hashlib.sha1()
                remaining = piece_size
                while remaining > 0:
                    chunk = handle.read(min(remaining, HASH_CHUNK_SIZE))
                    if not chunk:
                        break
                    piece_hash.update(chunk)
                    remaining -= len(chunk)
                if remaining == piece_size:
                    break
                digests.append(piece_hash.digest())
                if remaining > 0:
                    break
        except OSError as e:
            msg = f"File {self} is unreadable."
            raise UnreadableFileError(msg) from e
        return b"".join(digests)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _read_handle(self) -> BinaryIO:
        if self._handle is None:
            try:
                self._handle = open(self.path, "rb")  # noqa: SIM115
            except OSError as e:
                msg = f"File {self} is unreadable."
                raise UnreadableFileError(msg) from e
        return self._handle
