"""Tests for the auth and taxonomy boundaries."""

from __future__ import annotations

import time

import pytest

from ccindex.models import (
    AuthConfig,
    IndexEntry,
    ModerationState,
    Principal,
    TaxonomyConfig,
)
from ccindex.services.auth import AuthContext, RoleAuthContext
from ccindex.services.taxonomy import (
    StaticTaxonomy,
    Taxonomy,
    check_category,
    check_tags,
    normalize_tag,
)
from ccindex.utils.exceptions import InvalidCategoryError, InvalidTagError, TaxonomyError

pytestmark = [pytest.mark.unit, pytest.mark.services]


def make_entry(uploader_id: str = "alice") -> IndexEntry:
    now = time.time()
    return IndexEntry(
        id=1,
        info_hash=b"\x01" * 20,
        descriptor=b"de",
        name="x",
        total_length=0,
        file_count=1,
        uploader_id=uploader_id,
        category_id=1,
        title="x",
        moderation_state=ModerationState.PENDING,
        created_at=now,
        updated_at=now,
    )


class TestRoleAuthContext:
    def test_protocol(self):
        assert isinstance(RoleAuthContext(), AuthContext)

    def test_default_roles(self, alice, moderator):
        auth = RoleAuthContext()
        assert auth.is_moderator(moderator)
        assert auth.is_moderator(Principal(user_id="root", roles=frozenset({"administrator"})))
        assert not auth.is_moderator(alice)
        assert not auth.is_moderator(None)

    def test_configured_roles(self, moderator):
        auth = RoleAuthContext(AuthConfig(moderator_roles=["janitor"]))
        assert not auth.is_moderator(moderator)
        assert auth.is_moderator(Principal(user_id="j", roles=frozenset({"janitor"})))

    def test_owns(self, alice, bob):
        auth = RoleAuthContext()
        entry = make_entry("alice")
        assert auth.owns(alice, entry)
        assert not auth.owns(bob, entry)
        assert not auth.owns(None, entry)

    def test_can_modify(self, bob, moderator):
        auth = RoleAuthContext()
        entry = make_entry("alice")
        assert auth.can_modify(moderator, entry)
        assert not auth.can_modify(bob, entry)


class TestStaticTaxonomy:
    def test_protocol(self):
        assert isinstance(StaticTaxonomy(), Taxonomy)

    def test_default_categories(self):
        taxonomy = StaticTaxonomy()
        assert taxonomy.category_exists(1)
        assert not taxonomy.category_exists(0)
        assert taxonomy.category_by_name(" Books ") == 6
        assert taxonomy.category_by_name("nope") is None
        assert taxonomy.category_name(3) == "music"
        assert taxonomy.category_name(99) is None

    def test_open_vocabulary(self):
        taxonomy = StaticTaxonomy()
        assert taxonomy.check_tags(["Foo", " foo ", "bar"]) == {"foo", "bar"}

    def test_closed_vocabulary(self):
        taxonomy = StaticTaxonomy(TaxonomyConfig(tags=["Linux", "iso"]))
        assert taxonomy.tag_allowed("LINUX")
        assert not taxonomy.tag_allowed("windows")
        with pytest.raises(InvalidTagError) as exc_info:
            taxonomy.check_tags(["linux", "windows"])
        assert exc_info.value.tag == "windows"

    def test_empty_tag(self):
        with pytest.raises(InvalidTagError):
            StaticTaxonomy().check_tags(["  "])

    def test_tag_too_long(self):
        taxonomy = StaticTaxonomy(TaxonomyConfig(max_tag_length=5))
        with pytest.raises(InvalidTagError):
            taxonomy.check_tags(["toolong"])

    def test_too_many_tags(self):
        taxonomy = StaticTaxonomy(TaxonomyConfig(max_tags=2))
        with pytest.raises(TaxonomyError) as exc_info:
            taxonomy.check_tags(["a", "b", "c"])
        assert not isinstance(exc_info.value, InvalidTagError)
        assert exc_info.value.details == {"max_tags": 2}


class _EvenCategories:
    """Minimal third-party taxonomy."""

    def category_exists(self, category_id: int) -> bool:
        return category_id % 2 == 0

    def tag_allowed(self, tag: str) -> bool:
        return tag != "banned"


class TestModuleChecks:
    def test_normalize_tag(self):
        assert normalize_tag("  HD ") == "hd"

    def test_check_category(self):
        check_category(_EvenCategories(), 2)
        with pytest.raises(InvalidCategoryError) as exc_info:
            check_category(_EvenCategories(), 3)
        assert exc_info.value.category_id == 3

    def test_check_tags_custom_taxonomy(self):
        assert check_tags(_EvenCategories(), ["A", "b"]) == {"a", "b"}
        with pytest.raises(InvalidTagError):
            check_tags(_EvenCategories(), ["Banned"])
        with pytest.raises(InvalidTagError):
            check_tags(_EvenCategories(), [""])
