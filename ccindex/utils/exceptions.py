"""Exception hierarchy for ccIndex.

Every failure raised by the index engine derives from :class:`CCIndexError`.
The second level groups errors by how a request handler is expected to react:

- :class:`ValidationError`: malformed input, rejected synchronously, never retried
- :class:`ConflictError`: a policy decision (duplicate upload, one-shot moderation)
- :class:`AuthorizationError`: the acting principal may not perform the operation
- :class:`NotFoundError`: the addressed entry does not exist
- :class:`StorageError`: persistence faults, possibly transient
"""

from __future__ import annotations

from typing import Any


class CCIndexError(Exception):
    """Base exception for all ccIndex errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize ccIndex error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(CCIndexError):
    """Configuration validation errors."""


# Malformed input


class ValidationError(CCIndexError):
    """Data validation errors."""


class BencodeError(ValidationError):
    """Bencode encoding/decoding errors."""


class MalformedEncodingError(BencodeError):
    """Input is not well-formed bencode."""

    def __init__(self, message: str, position: int | None = None):
        """Initialize with the byte offset where decoding failed."""
        details = {"position": position} if position is not None else None
        super().__init__(message, details)
        self.position = position


class TrailingDataError(MalformedEncodingError):
    """A complete value was decoded but input bytes remain."""


class NestingTooDeepError(MalformedEncodingError):
    """Lists/dictionaries are nested deeper than the configured maximum."""


class BencodeEncodeError(BencodeError):
    """Value cannot be represented in bencode."""


class TorrentError(ValidationError):
    """Torrent descriptor validation errors."""


class MissingFieldError(TorrentError):
    """A required field is absent."""

    def __init__(self, field: str):
        """Initialize missing field error."""
        super().__init__(f"Missing required field: {field}", {"field": field})
        self.field = field


class WrongTypeError(TorrentError):
    """A field is present but has the wrong type."""

    def __init__(self, field: str, expected: str):
        """Initialize wrong type error."""
        super().__init__(
            f"Field '{field}' must be {expected}",
            {"field": field, "expected": expected},
        )
        self.field = field
        self.expected = expected


class InvalidPieceLengthError(TorrentError):
    """'piece length' is zero or negative."""


class InvalidPiecesLengthError(TorrentError):
    """'pieces' is not a whole number of 20-byte digests."""


class PieceCountMismatchError(TorrentError):
    """Number of piece digests does not fit the declared content length."""


class AmbiguousLayoutError(TorrentError):
    """Both or neither of 'length' and 'files' are present."""


class DescriptorTooLargeError(TorrentError):
    """Descriptor exceeds a configured resource cap."""

    def __init__(self, what: str, limit: int):
        """Initialize with the exceeded limit."""
        super().__init__(
            f"Torrent exceeds the maximum {what} ({limit})",
            {"limit": what, "max": limit},
        )
        self.what = what
        self.limit = limit


class InvalidPathError(TorrentError):
    """A file path is empty or contains unsafe components."""

    def __init__(self, field: str, reason: str):
        """Initialize invalid path error."""
        super().__init__(
            f"Invalid path in '{field}': {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field


class InvalidTextError(TorrentError):
    """A human-readable field is not valid UTF-8."""

    def __init__(self, field: str):
        """Initialize invalid text error."""
        super().__init__(f"Field '{field}' is not valid UTF-8", {"field": field})
        self.field = field


class TaxonomyError(ValidationError):
    """Category or tag does not exist in the taxonomy."""


class InvalidCategoryError(TaxonomyError):
    """Unknown category."""

    def __init__(self, category_id: Any):
        """Initialize invalid category error."""
        super().__init__("Unknown category", {"category_id": category_id})
        self.category_id = category_id


class InvalidTagError(TaxonomyError):
    """Tag is not part of the tag vocabulary."""

    def __init__(self, tag: str):
        """Initialize invalid tag error."""
        super().__init__("Unknown tag", {"tag": tag})
        self.tag = tag


class ReasonRequiredError(ValidationError):
    """A rejection was requested without a reason."""


class InvalidQueryError(ValidationError):
    """Listing parameters are out of range."""


# Conflicts


class ConflictError(CCIndexError):
    """Request conflicts with the current catalog state."""


class DuplicateTorrentError(ConflictError):
    """A live entry with the same info-hash already exists."""

    def __init__(self, existing_id: int, info_hash: str):
        """Initialize with the id of the entry that already holds the hash."""
        super().__init__(
            "Torrent already indexed",
            {"existing_id": existing_id, "info_hash": info_hash},
        )
        self.existing_id = existing_id
        self.info_hash = info_hash


class InvalidTransitionError(ConflictError):
    """Moderation transition not permitted from the current state."""

    def __init__(self, entry_id: int | None, current: str, requested: str):
        """Initialize invalid transition error."""
        super().__init__(
            f"Cannot move entry from {current} to {requested}",
            {"entry_id": entry_id, "current": current, "requested": requested},
        )
        self.entry_id = entry_id
        self.current = current
        self.requested = requested


class ResubmissionNotAllowedError(ConflictError):
    """Re-upload is disabled or the previous entry cannot be replaced."""


# Authorization / lookup


class AuthorizationError(CCIndexError):
    """Authorization errors."""


class ForbiddenError(AuthorizationError):
    """Acting principal may not perform the operation."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize forbidden error without resource details."""
        super().__init__(message)


class NotFoundError(CCIndexError):
    """Index entry does not exist."""


# Storage


class StorageError(CCIndexError):
    """Persistent storage errors."""


class TransientStorageError(StorageError):
    """Storage is temporarily unavailable (locked, busy, disconnected)."""
