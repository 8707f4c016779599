"""Bencoding module for the BitTorrent wire and metadata formats.

This module provides a convenient interface to the core bencode functionality.
"""

from __future__ import annotations

from bitseed.core.bencode import (
    BencodeValue,
    Builder,
    ByteString,
    Dictionary,
    Integer,
    ListValue,
    Parser,
    decode,
    encode,
)
from bitseed.exceptions import BencodeBuildError, BencodeError, BencodeParseError

__all__ = [
    "BencodeBuildError",
    "BencodeError",
    "BencodeParseError",
    "BencodeValue",
    "Builder",
    "ByteString",
    "Dictionary",
    "Integer",
    "ListValue",
    "Parser",
    "decode",
    "encode",
]
