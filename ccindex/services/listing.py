"""Listing engine.

Turns a filter, a sort order and a page request into a normalized
:class:`~ccindex.storage.index_store.ListingQuery`, applies visibility rules
for the requesting principal and runs it against the index store. This is a
pure read path.
"""

from __future__ import annotations

from typing import Iterable

from ccindex.models import (
    ListingConfig,
    ListingFilter,
    ListingResult,
    ListingSort,
    ModerationState,
    Page,
    Principal,
)
from ccindex.services.auth import AuthContext
from ccindex.services.moderation import VISIBLE_STATES
from ccindex.services.taxonomy import normalize_tag
from ccindex.storage.index_store import IndexStore, ListingQuery
from ccindex.utils.exceptions import InvalidQueryError
from ccindex.utils.logging_config import get_logger

logger = get_logger(__name__)


class ListingEngine:
    """Filtered, sorted, paginated catalog listings."""

    def __init__(
        self,
        store: IndexStore,
        config: ListingConfig | None = None,
        auth: AuthContext | None = None,
    ):
        """Initialize the listing engine.

        Args:
            store: Index store to read from
            config: Page size defaults and cap
            auth: Auth context (defaults to the store's)

        """
        self.store = store
        self.config = config or ListingConfig()
        self.auth = auth or store.auth

    def visible_states(
        self,
        principal: Principal | None,
        include_states: Iterable[ModerationState] | None = None,
    ) -> frozenset[ModerationState]:
        """States the principal may list.

        Non-moderators always get approved entries only, whatever they ask for.
        """
        if include_states is None or not self.auth.is_moderator(principal):
            return VISIBLE_STATES
        states = frozenset(ModerationState(s) for s in include_states)
        return states or VISIBLE_STATES

    def _resolve_page(self, page: Page | None) -> tuple[int, int]:
        page = page or Page()
        if page.offset < 0:
            msg = "Page offset must not be negative"
            raise InvalidQueryError(msg, {"offset": page.offset})
        limit = self.config.default_page_size if page.limit is None else page.limit
        if limit < 1:
            msg = "Page limit must be at least 1"
            raise InvalidQueryError(msg, {"limit": limit})
        return page.offset, min(limit, self.config.max_page_size)

    def _normalize_filter(self, listing_filter: ListingFilter | None) -> ListingFilter:
        listing_filter = listing_filter or ListingFilter()
        text = listing_filter.text.strip() if listing_filter.text else None
        return ListingFilter(
            category_ids=listing_filter.category_ids,
            tags=frozenset(
                t for t in (normalize_tag(tag) for tag in listing_filter.tags) if t
            ),
            uploader_id=listing_filter.uploader_id,
            text=text or None,
        )

    def list(
        self,
        listing_filter: ListingFilter | None = None,
        sort: ListingSort | None = None,
        page: Page | None = None,
        principal: Principal | None = None,
        include_states: Iterable[ModerationState] | None = None,
    ) -> ListingResult:
        """Return one page of entries and the total number of matches.

        Args:
            listing_filter: Restrictions; empty fields match everything
            sort: Sort key and direction (ties are broken by ascending id)
            page: Offset and limit; limit is capped at ``max_page_size``
            principal: Requesting user, if any
            include_states: States to list instead of approved (moderators only)

        Returns:
            Listing result. An offset past the end yields no items but the
            true total.

        Raises:
            InvalidQueryError: Negative offset or non-positive limit

        """
        offset, limit = self._resolve_page(page)
        query = ListingQuery(
            states=self.visible_states(principal, include_states),
            listing_filter=self._normalize_filter(listing_filter),
            sort=sort or ListingSort(),
            offset=offset,
            limit=limit,
        )
        total, items = self.store.run_listing(query)
        logger.debug(
            "Listing returned %d of %d entries (offset=%d, limit=%d)",
            len(items),
            total,
            offset,
            limit,
        )
        return ListingResult(items=items, total_count=total, offset=offset, limit=limit)
