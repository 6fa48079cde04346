"""Bencode codec.

Decodes untrusted bencode into plain Python values and encodes values back
into canonical form:

- integers -> ``int`` (signed 64-bit range)
- byte strings -> ``bytes``
- lists -> ``list``
- dictionaries -> ``dict`` with ``bytes`` keys

Canonical encoding sorts dictionary keys by raw byte value, writes integers
in minimal decimal form and prefixes byte strings with their exact length.
"""

from __future__ import annotations

from typing import Any, Dict, List, Union

from ccindex.utils.exceptions import (
    BencodeEncodeError,
    MalformedEncodingError,
    NestingTooDeepError,
    TrailingDataError,
)

BencodeValue = Union[int, bytes, List["BencodeValue"], Dict[bytes, "BencodeValue"]]

DEFAULT_MAX_DEPTH = 64

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Longest length prefix accepted; anything longer cannot fit in memory anyway
_MAX_LENGTH_DIGITS = 19
# 'i' + sign + 19 digits + 'e'
_MAX_INT_DIGITS = 20

_DIGITS = b"0123456789"


class _Container:
    """A list or dictionary being filled while decoding."""

    __slots__ = ("key", "start", "value")

    def __init__(
        self, value: list[BencodeValue] | dict[bytes, BencodeValue], start: int
    ) -> None:
        self.value = value
        self.start = start
        self.key = b""


class BencodeDecoder:
    """Decoder for a single bencoded value.

    Open lists and dictionaries live on an explicit stack rather than the
    call stack, so nesting is limited only by ``max_depth`` and hostile input
    fails with :class:`NestingTooDeepError`.
    """

    def __init__(self, data: bytes, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        """Initialize decoder.

        Args:
            data: Bencoded input
            max_depth: Maximum nesting depth of lists/dictionaries

        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            msg = "Bencode input must be bytes"
            raise MalformedEncodingError(msg)
        self.data = bytes(data)
        self.max_depth = max_depth
        self.pos = 0

    def decode(self) -> BencodeValue:
        """Decode the whole input.

        Raises:
            MalformedEncodingError: If the input is not a single valid value
            TrailingDataError: If bytes remain after the value

        """
        if not self.data:
            msg = "Empty input"
            raise MalformedEncodingError(msg, 0)
        value = self._decode_value()
        if self.pos != len(self.data):
            msg = f"Trailing data after value ({len(self.data) - self.pos} bytes)"
            raise TrailingDataError(msg, self.pos)
        return value

    def _peek(self) -> int:
        if self.pos >= len(self.data):
            msg = "Unexpected end of input"
            raise MalformedEncodingError(msg, self.pos)
        return self.data[self.pos]

    def _decode_value(self) -> BencodeValue:
        stack: list[_Container] = []
        while True:
            top = stack[-1] if stack else None
            if top is not None and self._at_container_end(top):
                stack.pop()
                value: BencodeValue = top.value
            else:
                if top is not None and isinstance(top.value, dict):
                    top.key = self._decode_key(top.value)
                marker = self._peek()
                if marker in (ord("l"), ord("d")):
                    if len(stack) >= self.max_depth:
                        msg = f"Nesting deeper than {self.max_depth} levels"
                        raise NestingTooDeepError(msg, self.pos)
                    stack.append(_Container([] if marker == ord("l") else {}, self.pos))
                    self.pos += 1
                    continue
                if marker == ord("i"):
                    value = self._decode_int()
                elif marker in _DIGITS:
                    value = self._decode_bytes()
                else:
                    msg = f"Invalid type marker 0x{marker:02x}"
                    raise MalformedEncodingError(msg, self.pos)

            if not stack:
                return value
            parent = stack[-1]
            if isinstance(parent.value, list):
                parent.value.append(value)
            else:
                parent.value[parent.key] = value

    def _at_container_end(self, container: _Container) -> bool:
        if self.pos >= len(self.data):
            kind = "list" if isinstance(container.value, list) else "dictionary"
            msg = f"Unterminated {kind}"
            raise MalformedEncodingError(msg, container.start)
        if self.data[self.pos] == ord("e"):
            self.pos += 1
            return True
        return False

    def _decode_key(self, result: dict[bytes, BencodeValue]) -> bytes:
        key_pos = self.pos
        if self.data[key_pos] not in _DIGITS:
            msg = "Dictionary key must be a byte string"
            raise MalformedEncodingError(msg, key_pos)
        key = self._decode_bytes()
        if key in result:
            msg = "Duplicate dictionary key"
            raise MalformedEncodingError(msg, key_pos)
        return key

    def _decode_int(self) -> int:
        start = self.pos
        end = self.data.find(b"e", start + 1, start + 2 + _MAX_INT_DIGITS)
        if end == -1:
            msg = "Unterminated or oversized integer"
            raise MalformedEncodingError(msg, start)

        raw = self.data[start + 1 : end]
        digits = raw[1:] if raw.startswith(b"-") else raw
        if not digits or any(c not in _DIGITS for c in digits):
            msg = "Invalid integer"
            raise MalformedEncodingError(msg, start)
        if digits.startswith(b"0") and (len(digits) > 1 or raw.startswith(b"-")):
            # Rejects leading zeros and negative zero
            msg = "Non-canonical integer"
            raise MalformedEncodingError(msg, start)

        value = int(raw)
        if not INT64_MIN <= value <= INT64_MAX:
            msg = "Integer out of 64-bit range"
            raise MalformedEncodingError(msg, start)

        self.pos = end + 1
        return value

    def _decode_bytes(self) -> bytes:
        start = self.pos
        colon = start
        while colon < len(self.data) and self.data[colon] in _DIGITS:
            colon += 1
            if colon - start > _MAX_LENGTH_DIGITS:
                msg = "Length prefix too long"
                raise MalformedEncodingError(msg, start)
        if colon >= len(self.data):
            msg = "Truncated length prefix"
            raise MalformedEncodingError(msg, start)
        if self.data[colon] != ord(":"):
            msg = "Non-numeric length prefix"
            raise MalformedEncodingError(msg, start)

        prefix = self.data[start:colon]
        if prefix.startswith(b"0") and len(prefix) > 1:
            msg = "Non-canonical length prefix"
            raise MalformedEncodingError(msg, start)

        length = int(prefix)
        begin = colon + 1
        if begin + length > len(self.data):
            msg = f"Unterminated string (declared {length} bytes)"
            raise MalformedEncodingError(msg, start)

        self.pos = begin + length
        return self.data[begin : self.pos]


class BencodeEncoder:
    """Canonical bencode encoder."""

    def encode(self, value: Any) -> bytes:
        """Encode a value.

        Raises:
            BencodeEncodeError: If the value (or a nested value) has no
                bencode representation

        """
        out: list[bytes] = []
        # (is_literal, item) pairs, popped in document order
        pending: list[tuple[bool, Any]] = [(False, value)]
        while pending:
            literal, item = pending.pop()
            if literal:
                out.append(item)
            elif isinstance(item, (list, tuple)):
                out.append(b"l")
                pending.append((True, b"e"))
                pending.extend((False, child) for child in reversed(item))
            elif isinstance(item, dict):
                out.append(b"d")
                pending.append((True, b"e"))
                for raw_key, child in reversed(self._sorted_items(item)):
                    pending.append((False, child))
                    pending.append((True, b"%d:%s" % (len(raw_key), raw_key)))
            else:
                out.append(self._encode_scalar(item))
        return b"".join(out)

    def _encode_scalar(self, value: Any) -> bytes:
        # bool is an int subclass but has no bencode meaning
        if isinstance(value, bool):
            msg = "Cannot encode bool"
            raise BencodeEncodeError(msg)
        if isinstance(value, int):
            if not INT64_MIN <= value <= INT64_MAX:
                msg = "Integer out of 64-bit range"
                raise BencodeEncodeError(msg)
            return b"i%de" % value
        if isinstance(value, (bytes, bytearray, memoryview)):
            raw = bytes(value)
            return b"%d:%s" % (len(raw), raw)
        if isinstance(value, str):
            raw = value.encode("utf-8")
            return b"%d:%s" % (len(raw), raw)
        msg = f"Cannot encode value of type {type(value).__name__}"
        raise BencodeEncodeError(msg)

    def _sorted_items(self, value: dict[Any, Any]) -> list[tuple[bytes, Any]]:
        items: dict[bytes, Any] = {}
        for key, item in value.items():
            if isinstance(key, str):
                raw_key = key.encode("utf-8")
            elif isinstance(key, (bytes, bytearray)):
                raw_key = bytes(key)
            else:
                msg = f"Dictionary key must be bytes or str, not {type(key).__name__}"
                raise BencodeEncodeError(msg)
            if raw_key in items:
                msg = "Duplicate dictionary key after normalization"
                raise BencodeEncodeError(msg)
            items[raw_key] = item
        return sorted(items.items())


_encoder = BencodeEncoder()


def decode(data: bytes, max_depth: int = DEFAULT_MAX_DEPTH) -> BencodeValue:
    """Decode bencoded bytes into a Python value."""
    return BencodeDecoder(data, max_depth=max_depth).decode()


def encode(value: Any) -> bytes:
    """Encode a Python value into canonical bencode."""
    return _encoder.encode(value)
