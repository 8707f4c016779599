"""Bencode values, parser and builder.

Bencode is the self-describing encoding used by BitTorrent metadata files
and tracker responses. Four value types exist:

- ``Integer``: ``i<decimal>e``
- ``ByteString``: ``<length>:<raw bytes>``
- ``ListValue``: ``l<value>...e``
- ``Dictionary``: ``d<key><value>...e`` with byte string keys emitted in
  lexicographic order

``Parser`` turns raw bytes into values with a single left-to-right scan
over an explicit container stack, so nesting depth is not bounded by the
interpreter's recursion limit. ``Builder`` turns native Python data into
values; ``represent()`` goes the other way.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from bitseed.exceptions import (
    BencodeBuildError,
    BencodeParseError,
    BencodeTypeError,
    BencodeValueError,
)

# Signed decimal without leading zeros; "-0" is not a valid literal.
_INTEGER_LITERAL = re.compile(rb"(?:0|-?[1-9][0-9]*)")
# String lengths are limited to 19 decimal digits.
_LENGTH_LITERAL = re.compile(rb"[0-9]{1,19}")
_DIGITS = frozenset(b"0123456789")


class BencodeValue(ABC):
    """Base class of all Bencode values."""

    @abstractmethod
    def to_bytes(self) -> bytes:
        """Serialize the value."""

    @abstractmethod
    def represent(self) -> Any:
        """Unwrap the value into native Python data."""

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BencodeValue):
            return NotImplemented
        return type(self) is type(other) and self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.to_bytes()))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.represent()!r})"


class Integer(BencodeValue):
    """Arbitrary precision signed integer."""

    def __init__(self, value: int | str | bytes):
        if isinstance(value, bool):
            msg = f"Invalid integer value: {value!r}"
            raise BencodeTypeError(msg)
        if isinstance(value, int):
            self.value = value
            return
        if isinstance(value, str):
            value = value.encode("ascii", "replace")
        if not isinstance(value, bytes):
            msg = f"Invalid integer value: {value!r}"
            raise BencodeTypeError(msg)
        if not _INTEGER_LITERAL.fullmatch(value):
            msg = f"Invalid integer literal: {value!r}"
            raise BencodeValueError(msg)
        try:
            self.value = int(value)
        except ValueError as e:
            msg = f"Integer literal of {len(value)} digits exceeds the conversion limit"
            raise BencodeValueError(msg) from e

    def to_bytes(self) -> bytes:
        try:
            return b"i%de" % self.value
        except ValueError as e:
            msg = "Integer exceeds the conversion limit"
            raise BencodeValueError(msg) from e

    def represent(self) -> int:
        return self.value


class ByteString(BencodeValue):
    """Raw byte sequence; text is stored UTF-8 encoded."""

    def __init__(self, value: bytes | bytearray | str):
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not isinstance(value, (bytes, bytearray)):
            msg = f"Invalid string value: {value!r}"
            raise BencodeTypeError(msg)
        self.value = bytes(value)

    def to_bytes(self) -> bytes:
        return b"%d:%s" % (len(self.value), self.value)

    def represent(self) -> bytes:
        return self.value


class Container(BencodeValue):
    """Value holding other values."""

    @abstractmethod
    def contain(self, sub_value: BencodeValue, key: ByteString | None = None) -> None:
        """Add a sub value to the container."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of contained values."""


class ListValue(Container):
    """Ordered sequence of values."""

    def __init__(self, values: list[BencodeValue] | None = None):
        self.value: list[BencodeValue] = []
        for sub_value in values or []:
            self.contain(sub_value)

    def contain(self, sub_value: BencodeValue, key: ByteString | None = None) -> None:
        if not isinstance(sub_value, BencodeValue):
            msg = f"Invalid list element: {sub_value!r}"
            raise BencodeTypeError(msg)
        self.value.append(sub_value)

    def __len__(self) -> int:
        return len(self.value)

    def to_bytes(self) -> bytes:
        return b"l" + b"".join(sub.to_bytes() for sub in self.value) + b"e"

    def represent(self) -> list[Any]:
        return [sub.represent() for sub in self.value]


class Dictionary(Container):
    """Mapping of byte string keys to values.

    Keys are unique; they are sorted at every serialization, so the order
    in which entries were added never shows on the wire.
    """

    def __init__(self, values: Mapping[bytes | str, BencodeValue] | None = None):
        self.value: dict[bytes, BencodeValue] = {}
        for key, sub_value in (values or {}).items():
            self.contain(sub_value, ByteString(key))

    def contain(self, sub_value: BencodeValue, key: ByteString | None = None) -> None:
        if not isinstance(key, ByteString):
            msg = f"Invalid key value for dictionary: {key!r}"
            raise BencodeTypeError(msg)
        if not isinstance(sub_value, BencodeValue):
            msg = f"Invalid dictionary value: {sub_value!r}"
            raise BencodeTypeError(msg)
        if key.value in self.value:
            msg = f"Duplicate key in dictionary: {key.value!r}"
            raise BencodeValueError(msg)
        self.value[key.value] = sub_value

    def __len__(self) -> int:
        return len(self.value)

    def to_bytes(self) -> bytes:
        parts = [b"d"]
        for key in sorted(self.value):
            parts.append(ByteString(key).to_bytes())
            parts.append(self.value[key].to_bytes())
        parts.append(b"e")
        return b"".join(parts)

    def represent(self) -> dict[bytes, Any]:
        return {key: sub.represent() for key, sub in self.value.items()}


class Parser:
    """Single pass Bencode parser.

    Example:
        >>> Parser(b"d3:bazi123ee").parse().represent()
        {b'baz': 123}

    """

    def __init__(self, data: bytes | bytearray | str):
        """Initialize the parser.

        Args:
            data: Bencoded input. Text is encoded as UTF-8 first.

        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.data = bytes(data)
        self._pointer = 0

    def parse(self) -> BencodeValue:
        """Parse the whole input into exactly one top-level value.

        Raises:
            BencodeParseError: On any malformed input, with the byte offset.

        """
        data = self.data
        self._pointer = 0
        stack: list[Container] = []
        pending_key: BencodeValue | None = None
        result: BencodeValue | None = None

        while self._pointer < len(data):
            if result is not None and not stack:
                msg = "Trailing data after a complete top-level value."
                raise BencodeParseError(msg, self._pointer)

            offset = self._pointer
            lead = data[offset]
            closed = False

            if lead == ord("i"):
                value: BencodeValue = self._parse_integer()
            elif lead == ord("l"):
                self._pointer += 1
                value = ListValue()
            elif lead == ord("d"):
                self._pointer += 1
                value = Dictionary()
            elif lead in _DIGITS:
                value = self._parse_string()
            elif lead == ord("e"):
                if not stack:
                    raise BencodeParseError("Unexpected ending.", offset)
                if pending_key is not None:
                    raise BencodeParseError("Incomplete dictionary.", offset)
                value = stack.pop()
                self._pointer += 1
                closed = True
            else:
                raise BencodeParseError("Invalid value.", offset)

            if closed:
                if not stack:
                    result = value
                continue

            if stack:
                container = stack[-1]
                if isinstance(container, ListValue):
                    container.contain(value)
                elif pending_key is None:
                    if not isinstance(value, ByteString):
                        msg = "Dictionary key must be a byte string."
                        raise BencodeParseError(msg, offset)
                    pending_key = value
                else:
                    try:
                        container.contain(value, pending_key)
                    except BencodeValueError as e:
                        raise BencodeParseError(e.message, offset) from e
                    pending_key = None
            elif not isinstance(value, Container):
                result = value

            if isinstance(value, Container):
                stack.append(value)

        if stack:
            raise BencodeParseError("Unclosed dictionary/list.", self._pointer)
        if result is None:
            raise BencodeParseError("Empty input.", self._pointer)
        return result

    def _parse_integer(self) -> Integer:
        start = self._pointer
        end = self.data.find(b"e", start)
        if end == -1:
            raise BencodeParseError("Missing ending in integer.", start)
        literal = self.data[start + 1 : end]
        if not _INTEGER_LITERAL.fullmatch(literal):
            msg = f"Invalid integer literal {literal[:32]!r}."
            raise BencodeParseError(msg, start)
        try:
            value = int(literal)
        except ValueError:
            msg = f"Integer literal of {len(literal)} digits is too long."
            raise BencodeParseError(msg, start) from None
        self._pointer = end + 1
        return Integer(value)

    def _parse_string(self) -> ByteString:
        start = self._pointer
        colon = self.data.find(b":", start)
        if colon == -1:
            raise BencodeParseError("Missing colon in string.", start)
        length_literal = self.data[start:colon]
        if not _LENGTH_LITERAL.fullmatch(length_literal):
            msg = "Invalid length definition in string."
            raise BencodeParseError(msg, start)
        try:
            length = int(length_literal)
        except ValueError:
            msg = f"String length of {len(length_literal)} digits is too long."
            raise BencodeParseError(msg, start) from None
        end = colon + 1 + length
        if end > len(self.data):
            msg = f"String length {length} exceeds the remaining input."
            raise BencodeParseError(msg, start)
        self._pointer = end
        return ByteString(self.data[colon + 1 : end])


class Builder:
    """Build Bencode values from native Python data."""

    @classmethod
    def build(cls, native: Any) -> BencodeValue:
        """Map native data to a Bencode value.

        ``int`` becomes ``Integer``; ``bytes``/``str`` become ``ByteString``;
        lists and tuples become ``ListValue``; a mapping becomes a
        ``Dictionary`` unless its keys are exactly ``0..n-1`` in order, in
        which case it is a ``ListValue``.

        Raises:
            BencodeBuildError: For any other type (float, None, bool, ...).

        """
        if isinstance(native, BencodeValue):
            return native
        if isinstance(native, bool):
            cls._raise_invalid(native)
        if isinstance(native, int):
            return Integer(native)
        if isinstance(native, (bytes, bytearray, str)):
            return ByteString(native)
        if isinstance(native, (list, tuple)):
            return ListValue([cls.build(item) for item in native])
        if isinstance(native, Mapping):
            if cls.is_dictionary(native):
                return Dictionary(
                    {cls._key(key): cls.build(item) for key, item in native.items()}
                )
            return ListValue([cls.build(item) for item in native.values()])
        return cls._raise_invalid(native)

    @staticmethod
    def is_dictionary(native: Mapping[Any, Any]) -> bool:
        """Tell whether a mapping is keyed by anything but ``0..n-1`` in order.

        An empty mapping is a dictionary.
        """
        if not native:
            return True
        return list(native.keys()) != list(range(len(native)))

    @classmethod
    def _key(cls, key: Any) -> bytes:
        if isinstance(key, bool):
            cls._raise_invalid(key)
        if isinstance(key, int):
            return str(key).encode("ascii")
        if isinstance(key, str):
            return key.encode("utf-8")
        if isinstance(key, (bytes, bytearray)):
            return bytes(key)
        return cls._raise_invalid(key)

    @staticmethod
    def _raise_invalid(native: Any) -> BencodeValue:
        msg = f"Invalid input type when building: {type(native).__name__}"
        raise BencodeBuildError(msg)


def encode(native: Any) -> bytes:
    """Encode native data to Bencode bytes."""
    return Builder.build(native).to_bytes()


def decode(data: bytes | bytearray | str) -> Any:
    """Decode Bencode bytes to native data."""
    return Parser(data).parse().represent()
