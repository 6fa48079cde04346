"""Upload and download façade.

Drives the pipeline raw bytes → decode → validate → hash → store, and the
reverse path from a stored snapshot to a downloadable torrent file or a
magnet link.
"""

from __future__ import annotations

from typing import Any, Iterable

from ccindex.core import info_hash as info_hash_engine
from ccindex.core.bencode import decode, encode
from ccindex.core.magnet import build_magnet_link
from ccindex.core.torrent import parse_torrent, with_announce
from ccindex.models import (
    IndexEntry,
    LimitsConfig,
    ModerationState,
    Principal,
    TorrentDescriptor,
    TrackerConfig,
)
from ccindex.storage.index_store import IndexStore
from ccindex.utils.exceptions import ForbiddenError, MissingFieldError, NotFoundError
from ccindex.utils.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)


class IngestService:
    """Accepts uploads and serves stored torrents."""

    def __init__(
        self,
        store: IndexStore,
        limits: LimitsConfig | None = None,
        tracker: TrackerConfig | None = None,
    ):
        self.store = store
        self.limits = limits or LimitsConfig()
        self.tracker = tracker or TrackerConfig()

    def inspect(self, raw: bytes) -> tuple[TorrentDescriptor, bytes]:
        """Parse and hash an upload without storing it.

        Returns:
            The validated descriptor and its 20-byte info-hash

        """
        descriptor = parse_torrent(raw, self.limits)
        return descriptor, info_hash_engine.compute(descriptor)

    def ingest(
        self,
        raw: bytes,
        principal: Principal | None,
        category_id: int,
        tags: Iterable[str] = (),
        title: str = "",
        description: str = "",
        resubmit_of: int | None = None,
    ) -> IndexEntry:
        """Validate an uploaded torrent file and store it as a pending entry.

        Args:
            raw: Uploaded file content
            principal: Authenticated uploader
            category_id: Category id
            tags: Tags
            title: Listing title, must not be blank
            description: Listing description
            resubmit_of: Id of a rejected entry this upload replaces

        Raises:
            ForbiddenError: No principal
            MissingFieldError: Blank title
            ValidationError: Malformed or oversized torrent, bad category/tags
            ConflictError: Duplicate torrent or re-upload not allowed

        """
        if principal is None:
            raise ForbiddenError()
        if not title or not title.strip():
            raise MissingFieldError("title")

        with LoggingContext(
            "torrent_ingest",
            logger=logger,
            uploader_id=principal.user_id,
            payload_size=len(raw),
        ):
            descriptor = parse_torrent(raw, self.limits)

        if resubmit_of is None:
            return self.store.submit(
                descriptor,
                principal.user_id,
                category_id,
                tags=tags,
                title=title,
                description=description,
            )
        return self.store.resubmit(
            descriptor,
            principal.user_id,
            resubmit_of,
            category_id=category_id,
            tags=tags,
            title=title,
            description=description,
        )

    def can_view(self, principal: Principal | None, entry: IndexEntry) -> bool:
        """Approved entries are public; others only to their uploader and moderators."""
        if entry.moderation_state == ModerationState.APPROVED:
            return True
        auth = self.store.auth
        return auth.is_moderator(principal) or auth.owns(principal, entry)

    def get_visible(self, entry_id: int, principal: Principal | None) -> IndexEntry:
        """Fetch an entry, hiding entries the principal may not see.

        Raises:
            NotFoundError: Entry missing or not visible to the principal

        """
        entry = self.store.get_by_id(entry_id)
        if not self.can_view(principal, entry):
            msg = f"Entry {entry_id} not found"
            raise NotFoundError(msg, {"entry_id": entry_id})
        return entry

    def _snapshot(self, entry: IndexEntry) -> dict[bytes, Any]:
        return decode(entry.descriptor, max_depth=self.limits.max_nesting_depth)

    def export_torrent(
        self,
        entry_id: int,
        principal: Principal | None,
        announce_url: str | None = None,
    ) -> bytes:
        """Return the stored torrent file, optionally announcing to our tracker.

        ``announce_url`` (or the configured tracker URL) replaces ``announce``
        and is prepended to ``announce-list``. The info dictionary is never
        modified.
        """
        entry = self.get_visible(entry_id, principal)
        url = announce_url or self.tracker.announce_url
        if not url:
            return entry.descriptor
        return encode(with_announce(self._snapshot(entry), url))

    def magnet_link(self, entry_id: int, principal: Principal | None) -> str:
        """Build a magnet URI for an entry."""
        entry = self.get_visible(entry_id, principal)
        tree = self._snapshot(entry)
        trackers: list[str] = []
        if self.tracker.announce_url:
            trackers.append(self.tracker.announce_url)
        announce = tree.get(b"announce")
        if isinstance(announce, bytes):
            trackers.append(announce.decode("utf-8", errors="replace"))
        for tier in tree.get(b"announce-list") or []:
            trackers.extend(url.decode("utf-8", errors="replace") for url in tier)
        return build_magnet_link(entry.info_hash, entry.title, trackers)
