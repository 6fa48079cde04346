"""Torrent descriptor validation.

Interprets a decoded bencode tree as a BitTorrent v1 metainfo file, checks
required fields, types and resource caps, and produces a
:class:`~ccindex.models.TorrentDescriptor`. The decoded ``info`` dictionary is
passed through untouched so the info-hash can be computed from the
producer's exact value bytes.
"""

from __future__ import annotations

from typing import Any

from ccindex.core.bencode import decode
from ccindex.models import FileInfo, LimitsConfig, TextPolicy, TorrentDescriptor
from ccindex.utils.exceptions import (
    AmbiguousLayoutError,
    DescriptorTooLargeError,
    InvalidPathError,
    InvalidPieceLengthError,
    InvalidPiecesLengthError,
    InvalidTextError,
    MissingFieldError,
    PieceCountMismatchError,
    WrongTypeError,
)

PIECE_HASH_LENGTH = 20

_UNSAFE_COMPONENTS = {".", ".."}


class TorrentValidator:
    """Validator for decoded torrent descriptors."""

    def __init__(self, limits: LimitsConfig | None = None) -> None:
        """Initialize the validator.

        Args:
            limits: Resource caps and text policy; defaults apply when omitted

        """
        self.limits = limits or LimitsConfig()

    def validate(self, tree: Any) -> TorrentDescriptor:
        """Validate a decoded bencode tree.

        Args:
            tree: Output of :func:`ccindex.core.bencode.decode`

        Returns:
            Validated descriptor

        Raises:
            TorrentError: On the first structural defect found

        """
        if not isinstance(tree, dict):
            raise WrongTypeError("torrent", "a dictionary")

        info = self._require(tree, b"info", dict, "info", "a dictionary")

        name = self._text(
            self._require(info, b"name", bytes, "info.name", "a byte string"),
            "info.name",
        )
        if not name:
            raise WrongTypeError("info.name", "a non-empty byte string")

        piece_length = self._require(
            info, b"piece length", int, "info.piece length", "an integer"
        )
        if piece_length <= 0:
            msg = "Piece length must be positive"
            raise InvalidPieceLengthError(msg, {"field": "info.piece length"})

        pieces = self._require(info, b"pieces", bytes, "info.pieces", "a byte string")
        if len(pieces) % PIECE_HASH_LENGTH != 0:
            msg = f"Pieces length must be a multiple of {PIECE_HASH_LENGTH}"
            raise InvalidPiecesLengthError(
                msg, {"field": "info.pieces", "length": len(pieces)}
            )

        has_length = b"length" in info
        has_files = b"files" in info
        if has_length == has_files:
            msg = "Torrent must specify exactly one of length (single file) or files (multi-file)"
            raise AmbiguousLayoutError(msg)

        # Single file name or top-level directory, never a path
        self._check_component(name, "info.name")
        if has_length:
            files = self._single_file(info, name)
        else:
            files = self._multi_file(info)
        total_length = sum(f.length for f in files)

        self._check_piece_count(total_length, piece_length, len(pieces))

        private = info.get(b"private", 0)
        if not isinstance(private, int):
            raise WrongTypeError("info.private", "an integer")

        return TorrentDescriptor(
            name=name,
            piece_length=piece_length,
            pieces=pieces,
            files=files,
            total_length=total_length,
            is_multi_file=has_files,
            is_private=bool(private),
            announce=self._optional_text(tree, b"announce", "announce"),
            announce_list=self._announce_list(tree),
            comment=self._optional_text(tree, b"comment", "comment"),
            created_by=self._optional_text(tree, b"created by", "created by"),
            creation_date=self._optional_int(tree, b"creation date", "creation date"),
            info=info,
            raw=tree,
        )

    def _require(
        self,
        data: dict[bytes, Any],
        key: bytes,
        kind: type,
        field: str,
        expected: str,
    ) -> Any:
        if key not in data:
            raise MissingFieldError(field)
        value = data[key]
        if not isinstance(value, kind):
            raise WrongTypeError(field, expected)
        return value

    def _text(self, raw: bytes, field: str) -> str:
        """Decode a human-readable byte string per the configured policy."""
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            if self.limits.text_policy == TextPolicy.REJECT:
                raise InvalidTextError(field) from None
            return raw.decode("utf-8", errors="replace")

    def _check_component(self, component: str, field: str) -> None:
        if not component:
            raise InvalidPathError(field, "empty path component")
        if component in _UNSAFE_COMPONENTS:
            raise InvalidPathError(field, "relative path component")
        if "/" in component or "\\" in component or "\x00" in component:
            raise InvalidPathError(field, "separator or NUL in path component")

    def _check_length(self, value: Any, field: str) -> int:
        if not isinstance(value, int) or value < 0:
            raise WrongTypeError(field, "a non-negative integer")
        if value > self.limits.max_total_length:
            raise DescriptorTooLargeError("total length", self.limits.max_total_length)
        return value

    def _single_file(self, info: dict[bytes, Any], name: str) -> list[FileInfo]:
        length = self._check_length(info[b"length"], "info.length")
        return [FileInfo(path=[name], length=length)]

    def _multi_file(self, info: dict[bytes, Any]) -> list[FileInfo]:
        entries = info[b"files"]
        if not isinstance(entries, list):
            raise WrongTypeError("info.files", "a list")
        if not entries:
            raise WrongTypeError("info.files", "a non-empty list")
        if len(entries) > self.limits.max_files:
            raise DescriptorTooLargeError("file count", self.limits.max_files)

        files: list[FileInfo] = []
        total = 0
        for i, entry in enumerate(entries):
            field = f"info.files[{i}]"
            if not isinstance(entry, dict):
                raise WrongTypeError(field, "a dictionary")
            length = self._check_length(
                self._require(entry, b"length", int, f"{field}.length", "an integer"),
                f"{field}.length",
            )
            total += length
            if total > self.limits.max_total_length:
                raise DescriptorTooLargeError(
                    "total length", self.limits.max_total_length
                )

            raw_path = self._require(entry, b"path", list, f"{field}.path", "a list")
            if not raw_path:
                raise InvalidPathError(f"{field}.path", "empty path")
            path: list[str] = []
            for part in raw_path:
                if not isinstance(part, bytes):
                    raise WrongTypeError(f"{field}.path", "a list of byte strings")
                component = self._text(part, f"{field}.path")
                self._check_component(component, f"{field}.path")
                path.append(component)
            files.append(FileInfo(path=path, length=length))
        return files

    def _check_piece_count(
        self, total_length: int, piece_length: int, pieces_size: int
    ) -> None:
        expected = -(-total_length // piece_length)
        actual = pieces_size // PIECE_HASH_LENGTH
        if abs(actual - expected) > 1:
            msg = "Number of pieces does not match content length"
            raise PieceCountMismatchError(
                msg, {"expected_pieces": expected, "actual_pieces": actual}
            )

    def _optional_text(
        self, data: dict[bytes, Any], key: bytes, field: str
    ) -> str | None:
        if key not in data:
            return None
        value = data[key]
        if not isinstance(value, bytes):
            raise WrongTypeError(field, "a byte string")
        return self._text(value, field)

    def _optional_int(self, data: dict[bytes, Any], key: bytes, field: str) -> int | None:
        if key not in data:
            return None
        value = data[key]
        if not isinstance(value, int):
            raise WrongTypeError(field, "an integer")
        return value

    def _announce_list(self, data: dict[bytes, Any]) -> list[list[str]] | None:
        if b"announce-list" not in data:
            return None
        tiers = data[b"announce-list"]
        expected = "a list of lists of byte strings"
        if not isinstance(tiers, list):
            raise WrongTypeError("announce-list", expected)
        result: list[list[str]] = []
        for tier in tiers:
            if not isinstance(tier, list) or not all(
                isinstance(url, bytes) for url in tier
            ):
                raise WrongTypeError("announce-list", expected)
            urls = [self._text(url, "announce-list") for url in tier]
            if urls:
                result.append(urls)
        return result


def validate(tree: Any, limits: LimitsConfig | None = None) -> TorrentDescriptor:
    """Validate a decoded bencode tree as a torrent descriptor."""
    return TorrentValidator(limits).validate(tree)


def parse_torrent(data: bytes, limits: LimitsConfig | None = None) -> TorrentDescriptor:
    """Decode and validate an uploaded torrent file.

    The payload size is checked before decoding, independently of any
    check the upload handler may already have made.
    """
    limits = limits or LimitsConfig()
    if not isinstance(data, (bytes, bytearray)):
        raise WrongTypeError("torrent", "bytes")
    if len(data) > limits.max_payload_bytes:
        raise DescriptorTooLargeError("payload size", limits.max_payload_bytes)
    tree = decode(bytes(data), max_depth=limits.max_nesting_depth)
    return TorrentValidator(limits).validate(tree)


def with_announce(raw: dict[bytes, Any], announce_url: str) -> dict[bytes, Any]:
    """Return a copy of a top-level torrent dictionary announcing to ``announce_url``.

    The URL replaces ``announce`` and, when an ``announce-list`` is present,
    is inserted as the first tier. ``info`` is shared, not copied, so the
    info-hash is unchanged.
    """
    url = announce_url.encode("utf-8")
    result = dict(raw)
    result[b"announce"] = url
    tiers = raw.get(b"announce-list")
    if isinstance(tiers, list):
        result[b"announce-list"] = [[url], *tiers]
    return result
