"""Info-hash computation.

The info-hash identifies a torrent's content: SHA-1 over the canonical
bencode of the ``info`` dictionary alone. Top-level keys such as
``announce`` or ``comment`` never influence it.
"""

from __future__ import annotations

import hashlib
import string

from ccindex.core.bencode import encode
from ccindex.models import TorrentDescriptor
from ccindex.utils.exceptions import ValidationError

INFO_HASH_LENGTH = 20

_HEX_DIGITS = frozenset(string.hexdigits)


def compute(descriptor: TorrentDescriptor) -> bytes:
    """Return the 20-byte info-hash of a validated descriptor."""
    # SHA-1 is mandated by BitTorrent v1 for the info-hash
    return hashlib.sha1(encode(descriptor.info)).digest()  # nosec B324


def to_hex(info_hash: bytes) -> str:
    """Render an info-hash as 40 lowercase hex characters."""
    if len(info_hash) != INFO_HASH_LENGTH:
        msg = f"Info hash must be {INFO_HASH_LENGTH} bytes"
        raise ValidationError(msg, {"length": len(info_hash)})
    return info_hash.hex()


def from_hex(text: str) -> bytes:
    """Parse a 40-character hex info-hash (either case)."""
    text = text.strip()
    if len(text) != INFO_HASH_LENGTH * 2 or not set(text) <= _HEX_DIGITS:
        msg = "Info hash must be 40 hexadecimal characters"
        raise ValidationError(msg)
    return bytes.fromhex(text)
