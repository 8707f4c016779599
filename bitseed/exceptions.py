"""Exception hierarchy for bitseed.

Provides a single exception tree for the codec, the torrent metadata
engine, the tracker, the seeder and the worker supervisor.
"""

from __future__ import annotations

from typing import Any


class BitseedError(Exception):
    """Base exception for all bitseed errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Keep ``message`` and optional structured ``details`` for logging."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} [{self.details}]"
        return self.message


class ValidationError(BitseedError):
    """Input that fails a value or range check."""


class ConfigurationError(ValidationError):
    """The merged TOML and environment configuration does not validate."""


class BencodeError(ValidationError):
    """Base class for codec failures."""


class BencodeParseError(BencodeError):
    """Malformed Bencode input.

    Carries the byte offset where the problem was detected.
    """

    def __init__(self, message: str, offset: int):
        """Initialize parse error with the offending byte offset."""
        super().__init__(
            f"Bencode parse error at offset {offset}. {message}",
            {"offset": offset},
        )
        self.offset = offset


class BencodeBuildError(BencodeError):
    """Native value cannot be mapped to a Bencode value."""


class BencodeTypeError(BencodeError):
    """Invalid type used for a Bencode value or dictionary key."""


class BencodeValueError(BencodeError):
    """Invalid value for a Bencode value (duplicate key, bad integer literal)."""


class InvalidPieceSizeError(ValidationError):
    """Piece size is not a positive integer."""


class BlockReadError(ValidationError):
    """Requested block lies outside the torrent's pieces."""


class EmptyAnnounceListError(ValidationError):
    """Torrent file requested without any announce URL."""


class DiskError(BitseedError):
    """Reading the shared payload from disk failed."""


class FileSystemError(DiskError):
    """The shared file is missing or unusable."""


class FileNotExistsError(FileSystemError):
    """Shared file does not exist."""


class UnreadableFileError(FileSystemError):
    """Shared file cannot be read."""


class PersistenceError(BitseedError):
    """The persistence backend failed to store or load a record."""


class NetworkError(BitseedError):
    """Socket level failure on the tracker or seeder side."""


class SocketError(NetworkError):
    """Listening or communication socket failure."""


class PeerDisconnectedError(NetworkError):
    """Remote peer closed the connection."""


class ProtocolError(BitseedError):
    """A peer broke the wire protocol."""


class HandshakeError(ProtocolError):
    """Handshake with a wrong length, protocol string or identifier."""


class MessageError(ProtocolError):
    """Length-prefixed message with a malformed payload."""


class InvalidTorrentAttributeError(BitseedError):
    """Access to an attribute a torrent does not have."""


class SupervisorError(BitseedError):
    """Invalid worker slot or supervisor misuse."""
