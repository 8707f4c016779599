"""Peer wire protocol framing for the seeder.

The handshake is a fixed 68 byte frame. Every later message is a 4 byte
big-endian length, one type byte and the payload. Only the messages a seed
exchanges are modelled. ``Continue`` and ``CloseConnection`` are what the
per-message handler returns to the connection loop.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

from bitseed.exceptions import HandshakeError, MessageError
from bitseed.models import MessageType

HANDSHAKE_LENGTH = 68
REQUEST_PAYLOAD_LENGTH = 12

_FRAME_HEADER = struct.Struct("!IB")
_BLOCK_REQUEST = struct.Struct("!III")
_BLOCK_HEADER = struct.Struct("!II")


@dataclass(frozen=True)
class Handshake:
    """Opening frame carrying the torrent's info hash and the sender's peer id."""

    info_hash: bytes
    peer_id: bytes

    PROTOCOL_STRING: ClassVar[bytes] = b"BitTorrent protocol"
    RESERVED_BYTES: ClassVar[bytes] = bytes(8)

    def __post_init__(self) -> None:
        for field_name in ("info_hash", "peer_id"):
            value = getattr(self, field_name)
            if len(value) != 20:
                msg = f"{field_name} needs 20 bytes, got {len(value)}"
                raise HandshakeError(msg, {field_name: value.hex()})

    def encode(self) -> bytes:
        protocol = self.PROTOCOL_STRING
        return b"".join(
            (bytes([len(protocol)]), protocol, self.RESERVED_BYTES, self.info_hash, self.peer_id)
        )

    @classmethod
    def decode(cls, data: bytes) -> Handshake:
        """Parse a complete frame, raising ``HandshakeError`` when it is not one."""
        if len(data) != HANDSHAKE_LENGTH:
            msg = f"Handshake frame is {len(data)} bytes, expected {HANDSHAKE_LENGTH}"
            raise HandshakeError(msg)
        protocol = data[1 : 1 + data[0]]
        if protocol != cls.PROTOCOL_STRING:
            msg = f"Unexpected protocol {protocol!r}"
            raise HandshakeError(msg)
        return cls(data[28:48], data[48:68])


class PeerMessage:
    """Length-prefixed message. Subclasses set ``message_id`` and ``payload``."""

    message_id: ClassVar[MessageType]

    def payload(self) -> bytes:
        return b""

    def encode(self) -> bytes:
        body = self.payload()
        return _FRAME_HEADER.pack(len(body) + 1, self.message_id) + body


class UnchokeMessage(PeerMessage):
    message_id = MessageType.UNCHOKE


@dataclass(frozen=True)
class BitfieldMessage(PeerMessage):
    bitfield: bytes

    message_id = MessageType.BITFIELD

    @classmethod
    def full(cls, piece_count: int) -> BitfieldMessage:
        """Advertise all ``piece_count`` pieces; padding bits stay zero."""
        whole, spare = divmod(piece_count, 8)
        tail = bytes([(0xFF << (8 - spare)) & 0xFF]) if spare else b""
        return cls(b"\xff" * whole + tail)

    def payload(self) -> bytes:
        return self.bitfield


@dataclass(frozen=True)
class RequestMessage(PeerMessage):
    piece_index: int
    begin: int
    length: int

    message_id = MessageType.REQUEST

    def payload(self) -> bytes:
        return _BLOCK_REQUEST.pack(self.piece_index, self.begin, self.length)

    @classmethod
    def from_payload(cls, payload: bytes) -> RequestMessage:
        if len(payload) != REQUEST_PAYLOAD_LENGTH:
            msg = f"Block request payload is {len(payload)} bytes, expected {REQUEST_PAYLOAD_LENGTH}"
            raise MessageError(msg)
        return cls(*_BLOCK_REQUEST.unpack(payload))


@dataclass(frozen=True)
class PieceMessage(PeerMessage):
    """A block of file data answering a ``RequestMessage``."""

    piece_index: int
    begin: int
    block: bytes

    message_id = MessageType.PIECE

    def payload(self) -> bytes:
        return _BLOCK_HEADER.pack(self.piece_index, self.begin) + self.block

    @classmethod
    def from_payload(cls, payload: bytes) -> PieceMessage:
        if len(payload) < _BLOCK_HEADER.size:
            msg = f"Block payload of {len(payload)} bytes has no header"
            raise MessageError(msg)
        piece_index, begin = _BLOCK_HEADER.unpack_from(payload)
        return cls(piece_index, begin, payload[_BLOCK_HEADER.size :])


@dataclass(frozen=True)
class Continue:
    """Keep serving the connection."""


@dataclass(frozen=True)
class CloseConnection:
    """Close the connection for ``reason``."""

    reason: str


Outcome = Continue | CloseConnection

CONTINUE = Continue()
