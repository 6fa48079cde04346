"""Category and tag vocabulary boundary."""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from ccindex.models import TaxonomyConfig
from ccindex.utils.exceptions import (
    InvalidCategoryError,
    InvalidTagError,
    TaxonomyError,
)


@runtime_checkable
class Taxonomy(Protocol):
    """Category/tag existence checks supplied by the embedding service."""

    def category_exists(self, category_id: int) -> bool: ...

    def tag_allowed(self, tag: str) -> bool: ...


def normalize_tag(tag: str) -> str:
    """Tags are compared trimmed and lowercase."""
    return tag.strip().lower()


class StaticTaxonomy:
    """Taxonomy backed by the ``[taxonomy]`` configuration section."""

    def __init__(self, config: TaxonomyConfig | None = None):
        self.config = config or TaxonomyConfig()
        self.categories = dict(self.config.categories)
        self._category_ids = frozenset(self.categories.values())
        self._tags = (
            None
            if self.config.tags is None
            else frozenset(normalize_tag(t) for t in self.config.tags)
        )

    def category_exists(self, category_id: int) -> bool:
        return category_id in self._category_ids

    def tag_allowed(self, tag: str) -> bool:
        tag = normalize_tag(tag)
        if not tag or len(tag) > self.config.max_tag_length:
            return False
        return self._tags is None or tag in self._tags

    def category_by_name(self, name: str) -> int | None:
        """Look up a category id by (case-insensitive) name."""
        return self.categories.get(name.strip().lower())

    def category_name(self, category_id: int) -> str | None:
        for name, cid in self.categories.items():
            if cid == category_id:
                return name
        return None

    def check_tags(self, tags: Iterable[str]) -> frozenset[str]:
        """Normalize ``tags`` and reject unknown or excess ones.

        Raises:
            InvalidTagError: On the first tag the vocabulary does not allow
            TaxonomyError: When more than ``max_tags`` distinct tags are given

        """
        normalized = frozenset(normalize_tag(t) for t in tags)
        for tag in sorted(normalized):
            if not self.tag_allowed(tag):
                raise InvalidTagError(tag)
        if len(normalized) > self.config.max_tags:
            msg = f"At most {self.config.max_tags} tags are allowed"
            raise TaxonomyError(msg, {"max_tags": self.config.max_tags})
        return normalized


def check_category(taxonomy: Taxonomy, category_id: int) -> None:
    """Raise :class:`InvalidCategoryError` for unknown categories."""
    if not taxonomy.category_exists(category_id):
        raise InvalidCategoryError(category_id)


def check_tags(taxonomy: Taxonomy, tags: Iterable[str]) -> frozenset[str]:
    """Normalize tags and validate them against any taxonomy."""
    if isinstance(taxonomy, StaticTaxonomy):
        return taxonomy.check_tags(tags)
    normalized = frozenset(normalize_tag(t) for t in tags)
    for tag in sorted(normalized):
        if not tag or not taxonomy.tag_allowed(tag):
            raise InvalidTagError(tag)
    return normalized
