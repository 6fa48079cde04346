"""Pydantic models for ccIndex.

Provides validated data models for torrent descriptors, index entries,
listing queries and configuration.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, SkipValidation, field_validator, model_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ModerationState(str, Enum):
    """Lifecycle state of an index entry."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TextPolicy(str, Enum):
    """How non-UTF-8 human-readable fields are handled."""

    REPLACE = "replace"  # Substitute U+FFFD
    REJECT = "reject"  # Fail validation


class ResubmissionPolicy(str, Enum):
    """Whether a rejected upload may be replaced by a new entry."""

    LINK = "link"  # New entry linked to the rejected one
    FORBID = "forbid"  # Re-upload path disabled


class SortField(str, Enum):
    """Listing sort keys."""

    CREATED_AT = "created_at"
    TITLE = "title"
    SIZE = "size"


class SortOrder(str, Enum):
    """Listing sort direction."""

    ASC = "asc"
    DESC = "desc"


# Torrent descriptor


class FileInfo(BaseModel):
    """File entry of a torrent descriptor."""

    path: list[str] = Field(..., min_length=1, description="Path components")
    length: int = Field(..., ge=0, description="File length in bytes")

    @property
    def full_path(self) -> str:
        """Path joined with '/'."""
        return "/".join(self.path)


class TorrentDescriptor(BaseModel):
    """Validated torrent metadata.

    ``info`` and ``raw`` keep the decoded bencode dictionaries exactly as
    received; they are what the info-hash and the stored snapshot are
    computed from. The remaining fields are sanitized views for display
    and indexing.
    """

    name: str = Field(..., description="Torrent name (sanitized)")
    piece_length: int = Field(..., gt=0, description="Piece length in bytes")
    pieces: bytes = Field(..., description="Concatenated SHA-1 piece digests")
    files: list[FileInfo] = Field(default_factory=list, description="File list")
    total_length: int = Field(..., ge=0, description="Total content length")
    is_multi_file: bool = Field(default=False, description="Multi-file layout")
    is_private: bool = Field(default=False, description="Private flag (BEP 27)")

    announce: str | None = Field(None, description="Announce URL")
    announce_list: list[list[str]] | None = Field(None, description="Tracker tiers")
    comment: str | None = Field(None, description="Torrent comment")
    created_by: str | None = Field(None, description="Created by")
    creation_date: int | None = Field(None, description="Creation date (epoch)")

    # Kept as decoded; the info-hash is computed from this exact tree
    info: SkipValidation[dict[bytes, Any]] = Field(
        ..., description="Decoded info dictionary"
    )
    raw: SkipValidation[dict[bytes, Any]] = Field(
        ..., description="Decoded top-level dictionary"
    )

    model_config = {"arbitrary_types_allowed": True}

    @property
    def num_pieces(self) -> int:
        """Number of piece digests."""
        return len(self.pieces) // 20

    @property
    def file_count(self) -> int:
        """Number of files."""
        return len(self.files)

    def piece_hash(self, index: int) -> bytes:
        """Return the SHA-1 digest of piece ``index``."""
        if index < 0 or index >= self.num_pieces:
            msg = f"Invalid piece index: {index}"
            raise IndexError(msg)
        return self.pieces[index * 20 : index * 20 + 20]


# Identity and catalog


class Principal(BaseModel):
    """Acting user as supplied by the auth context."""

    user_id: str = Field(..., min_length=1, description="User identifier")
    roles: frozenset[str] = Field(default_factory=frozenset, description="Roles")


class IndexEntry(BaseModel):
    """Catalog record of an uploaded torrent."""

    id: int = Field(..., description="Entry id")
    info_hash: bytes = Field(..., min_length=20, max_length=20, description="Info hash")
    descriptor: bytes = Field(..., description="Canonical bencode snapshot")
    name: str = Field(..., description="Torrent name")
    total_length: int = Field(..., ge=0, description="Total content length")
    file_count: int = Field(..., ge=0, description="Number of files")
    uploader_id: str = Field(..., description="Uploader user id")
    category_id: int = Field(..., description="Category id")
    tags: frozenset[str] = Field(default_factory=frozenset, description="Tags")
    title: str = Field(..., description="Listing title")
    description: str = Field(default="", description="Listing description")
    moderation_state: ModerationState = Field(
        default=ModerationState.PENDING, description="Moderation state"
    )
    supersedes_id: int | None = Field(
        None, description="Rejected entry this one re-uploads"
    )
    superseded: bool = Field(default=False, description="Replaced by a re-upload")
    created_at: float = Field(..., description="Creation time (epoch seconds)")
    updated_at: float = Field(..., description="Last update (epoch seconds)")

    @property
    def info_hash_hex(self) -> str:
        """Info hash as 40 lowercase hex characters."""
        return self.info_hash.hex()


class ModerationRecord(BaseModel):
    """Audit record of a moderation transition."""

    entry_id: int
    from_state: ModerationState
    to_state: ModerationState
    actor_id: str
    reason: str | None = None
    created_at: float


class EntrySummary(BaseModel):
    """Listing row."""

    id: int
    info_hash: str = Field(..., description="Info hash (hex)")
    title: str
    name: str
    category_id: int
    uploader_id: str
    tags: list[str] = Field(default_factory=list)
    total_length: int
    file_count: int
    moderation_state: ModerationState
    created_at: float


# Listing queries


class ListingFilter(BaseModel):
    """Listing filter; empty fields do not restrict."""

    category_ids: frozenset[int] = Field(
        default_factory=frozenset, description="Match any of these categories"
    )
    tags: frozenset[str] = Field(
        default_factory=frozenset, description="Match entries with any of these tags"
    )
    uploader_id: str | None = Field(None, description="Uploader user id")
    text: str | None = Field(None, description="Substring of title or description")


class ListingSort(BaseModel):
    """Listing order."""

    key: SortField = SortField.CREATED_AT
    order: SortOrder = SortOrder.DESC


class Page(BaseModel):
    """Offset pagination. ``limit=None`` selects the configured default."""

    offset: int = 0
    limit: int | None = None


class ListingResult(BaseModel):
    """One page of listing results."""

    items: list[EntrySummary] = Field(default_factory=list)
    total_count: int = Field(..., ge=0)
    offset: int = 0
    limit: int = 0


# Configuration


class StorageConfig(BaseModel):
    """Index store configuration."""

    database_path: str = Field(
        default="ccindex.db", description="SQLite database file"
    )
    busy_timeout: float = Field(
        default=10.0,
        ge=0.0,
        le=600.0,
        description="Seconds to wait for a database lock",
    )
    journal_mode: str = Field(default="wal", description="SQLite journal mode")
    read_retry_delay: float = Field(
        default=0.05,
        ge=0.0,
        le=10.0,
        description="Delay before the single retry of a failed read",
    )

    @field_validator("journal_mode")
    @classmethod
    def validate_journal_mode(cls, v: str) -> str:
        """Restrict journal mode to the values SQLite understands."""
        v = v.lower()
        if v not in {"wal", "delete", "truncate", "persist", "memory"}:
            msg = f"Unsupported journal mode: {v}"
            raise ValueError(msg)
        return v


class LimitsConfig(BaseModel):
    """Resource caps applied to uploaded descriptors."""

    max_payload_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Maximum size of an uploaded torrent file",
    )
    max_nesting_depth: int = Field(
        default=64, ge=2, le=1024, description="Maximum bencode nesting depth"
    )
    max_total_length: int = Field(
        default=2**50,
        ge=1,
        description="Maximum declared content length in bytes",
    )
    max_files: int = Field(
        default=100_000, ge=1, description="Maximum number of files"
    )
    text_policy: TextPolicy = Field(
        default=TextPolicy.REPLACE,
        description="Handling of invalid UTF-8 in names and paths",
    )


class ListingConfig(BaseModel):
    """Listing configuration."""

    default_page_size: int = Field(default=30, ge=1, description="Default page size")
    max_page_size: int = Field(default=100, ge=1, description="Page size cap")

    @model_validator(mode="after")
    def validate_page_sizes(self) -> ListingConfig:
        """Default page size must not exceed the cap."""
        if self.default_page_size > self.max_page_size:
            msg = "default_page_size cannot exceed max_page_size"
            raise ValueError(msg)
        return self


class ModerationConfig(BaseModel):
    """Moderation workflow configuration."""

    resubmission_policy: ResubmissionPolicy = Field(
        default=ResubmissionPolicy.LINK,
        description="Whether rejected uploads may be re-uploaded",
    )
    require_reject_reason: bool = Field(
        default=True, description="Rejections must carry a reason"
    )


class AuthConfig(BaseModel):
    """Role mapping used by the default auth context."""

    moderator_roles: list[str] = Field(
        default_factory=lambda: ["moderator", "administrator"],
        description="Roles granting moderator privilege",
    )


class TaxonomyConfig(BaseModel):
    """Static category/tag vocabulary."""

    categories: dict[str, int] = Field(
        default_factory=lambda: {
            "movies": 1,
            "tv": 2,
            "music": 3,
            "games": 4,
            "apps": 5,
            "books": 6,
            "other": 7,
        },
        description="Category name -> id",
    )
    tags: list[str] | None = Field(
        None, description="Closed tag vocabulary (None allows any tag)"
    )
    max_tags: int = Field(default=20, ge=0, description="Maximum tags per entry")
    max_tag_length: int = Field(default=40, ge=1, description="Maximum tag length")


class TrackerConfig(BaseModel):
    """Tracker the exported torrents announce to."""

    announce_url: str | None = Field(
        None, description="Announce URL injected into exported torrents"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=True, description="Use JSON lines in the log file"
    )
    log_correlation_id: bool = Field(
        default=True, description="Include correlation IDs"
    )
    rich_console: bool = Field(
        default=True, description="Render console logs with Rich"
    )


class Config(BaseModel):
    """Main configuration model."""

    storage: StorageConfig = Field(
        default_factory=StorageConfig, description="Storage configuration"
    )
    limits: LimitsConfig = Field(
        default_factory=LimitsConfig, description="Upload limits"
    )
    listing: ListingConfig = Field(
        default_factory=ListingConfig, description="Listing configuration"
    )
    moderation: ModerationConfig = Field(
        default_factory=ModerationConfig, description="Moderation configuration"
    )
    auth: AuthConfig = Field(
        default_factory=AuthConfig, description="Auth configuration"
    )
    taxonomy: TaxonomyConfig = Field(
        default_factory=TaxonomyConfig, description="Category/tag vocabulary"
    )
    tracker: TrackerConfig = Field(
        default_factory=TrackerConfig, description="Tracker configuration"
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @model_validator(mode="after")
    def validate_config(self) -> Config:
        """Category ids must be unique."""
        ids = list(self.taxonomy.categories.values())
        if len(ids) != len(set(ids)):
            msg = "Category ids must be unique"
            raise ValueError(msg)
        return self
