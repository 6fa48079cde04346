"""Tests for the SQLite index store."""

from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from ccindex.core import info_hash
from ccindex.core.bencode import decode
from ccindex.core.torrent import validate
from ccindex.models import (
    ModerationConfig,
    ModerationState,
    Principal,
    ResubmissionPolicy,
    StorageConfig,
    TaxonomyConfig,
)
from ccindex.services.moderation import ModerationStateMachine
from ccindex.services.taxonomy import StaticTaxonomy
from ccindex.storage.index_store import IndexStore
from ccindex.utils.events import EventType
from ccindex.utils.exceptions import (
    DuplicateTorrentError,
    ForbiddenError,
    InvalidCategoryError,
    InvalidTagError,
    InvalidTransitionError,
    MissingFieldError,
    NotFoundError,
    ReasonRequiredError,
    ResubmissionNotAllowedError,
    TransientStorageError,
)

pytestmark = [pytest.mark.unit, pytest.mark.storage]


@pytest.fixture
def descriptor(torrent_tree):
    return validate(torrent_tree(name=b"debian.iso"))


@pytest.fixture
def entry(store, descriptor):
    return store.submit(descriptor, "alice", 5, tags=["linux"], title="Debian")


class TestSubmit:
    """Storing new entries."""

    def test_submit_pending(self, store, descriptor):
        entry = store.submit(
            descriptor,
            "alice",
            5,
            tags=[" Linux ", "ISO", "linux"],
            title="Debian 12",
            description="netinst",
        )
        assert entry.id > 0
        assert entry.moderation_state == ModerationState.PENDING
        assert entry.tags == frozenset({"linux", "iso"})
        assert entry.info_hash == info_hash.compute(descriptor)
        assert entry.uploader_id == "alice"
        assert entry.category_id == 5
        assert entry.title == "Debian 12"
        assert entry.description == "netinst"
        assert entry.name == "debian.iso"
        assert entry.total_length == descriptor.total_length
        assert entry.file_count == 1
        assert entry.supersedes_id is None
        assert not entry.superseded
        assert entry.created_at == entry.updated_at

    def test_title_defaults_to_name(self, store, descriptor):
        assert store.submit(descriptor, "alice", 1).title == "debian.iso"

    def test_blank_title_rejected(self, store, descriptor):
        with pytest.raises(MissingFieldError):
            store.submit(descriptor, "alice", 1, title="   ")

    def test_snapshot_preserves_info_hash(self, store, entry):
        tree = decode(entry.descriptor)
        assert info_hash.compute(validate(tree)) == entry.info_hash

    def test_roundtrip_by_id_and_hash(self, store, entry):
        assert store.get_by_id(entry.id) == entry
        assert store.get_by_hash(entry.info_hash) == entry
        assert store.get_by_hash(entry.info_hash_hex) == entry

    def test_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.get_by_id(999)
        with pytest.raises(NotFoundError):
            store.get_by_hash(b"\x00" * 20)

    def test_invalid_category(self, store, descriptor):
        with pytest.raises(InvalidCategoryError):
            store.submit(descriptor, "alice", 999)
        assert store.count_entries() == 0

    def test_invalid_tag(self, tmp_path, descriptor):
        taxonomy = StaticTaxonomy(TaxonomyConfig(tags=["linux", "iso"]))
        store = IndexStore(tmp_path / "closed.db", taxonomy=taxonomy)
        store.submit(descriptor, "alice", 5, tags=["LINUX"])
        with pytest.raises(InvalidTagError) as exc_info:
            store.update_category_tags(1, Principal(user_id="alice"), tags=["warez"])
        assert exc_info.value.tag == "warez"

    def test_persistent_across_instances(self, tmp_path, descriptor):
        path = tmp_path / "persist.db"
        entry = IndexStore(path).submit(descriptor, "alice", 1)
        assert IndexStore(path).get_by_id(entry.id).info_hash == entry.info_hash

    def test_initialize_idempotent(self, store, entry):
        store.initialize()
        store.initialize()
        assert store.count_entries() == 1


class TestDeduplication:
    """One live entry per info-hash."""

    def test_duplicate_rejected(self, store, entry, descriptor):
        with pytest.raises(DuplicateTorrentError) as exc_info:
            store.submit(descriptor, "bob", 1, title="Again")
        assert exc_info.value.existing_id == entry.id
        assert exc_info.value.info_hash == entry.info_hash_hex
        assert store.count_entries() == 1

    def test_duplicate_with_different_outer_keys(self, store, entry, torrent_tree):
        other = validate(
            torrent_tree(name=b"debian.iso", announce=b"udp://elsewhere:80", comment=b"x")
        )
        with pytest.raises(DuplicateTorrentError):
            store.submit(other, "bob", 1)

    def test_duplicate_of_rejected_entry(self, store, entry, descriptor, moderator):
        store.transition_state(entry.id, ModerationState.REJECTED, moderator, "spam")
        with pytest.raises(DuplicateTorrentError):
            store.submit(descriptor, "alice", 1)

    def test_hash_free_after_delete(self, store, entry, descriptor, alice):
        store.delete(entry.id, alice)
        again = store.submit(descriptor, "alice", 1)
        assert again.id != entry.id

    @pytest.mark.slow
    def test_concurrent_identical_submissions(self, store, descriptor):
        attempts = 8

        def submit(i: int):
            try:
                return store.submit(descriptor, f"user{i}", 1)
            except DuplicateTorrentError as e:
                return e

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            results = list(pool.map(submit, range(attempts)))

        stored = [r for r in results if not isinstance(r, DuplicateTorrentError)]
        duplicates = [r for r in results if isinstance(r, DuplicateTorrentError)]
        assert len(stored) == 1
        assert len(duplicates) == attempts - 1
        assert all(d.existing_id == stored[0].id for d in duplicates)
        assert store.count_entries() == 1


class TestTransitions:
    """Moderation through the store."""

    def test_requires_moderator(self, store, entry, alice):
        with pytest.raises(ForbiddenError):
            store.transition_state(entry.id, ModerationState.APPROVED, alice)
        assert store.get_by_id(entry.id).moderation_state == ModerationState.PENDING

    def test_approve(self, store, entry, moderator):
        approved = store.transition_state(entry.id, ModerationState.APPROVED, moderator)
        assert approved.moderation_state == ModerationState.APPROVED
        assert approved.updated_at >= entry.updated_at

    def test_one_shot(self, store, entry, moderator):
        store.transition_state(entry.id, ModerationState.APPROVED, moderator)
        with pytest.raises(InvalidTransitionError) as exc_info:
            store.transition_state(entry.id, ModerationState.REJECTED, moderator, "x")
        assert exc_info.value.current == "approved"
        assert exc_info.value.requested == "rejected"

    def test_reject_requires_reason(self, store, entry, moderator):
        with pytest.raises(ReasonRequiredError):
            store.transition_state(entry.id, ModerationState.REJECTED, moderator)
        with pytest.raises(ReasonRequiredError):
            store.transition_state(entry.id, ModerationState.REJECTED, moderator, "  ")

    def test_reject_with_reason_audited(self, store, entry, moderator):
        store.transition_state(
            entry.id, ModerationState.REJECTED, moderator, reason=" fake upload "
        )
        (record,) = store.get_moderation_history(entry.id)
        assert record.entry_id == entry.id
        assert record.from_state == ModerationState.PENDING
        assert record.to_state == ModerationState.REJECTED
        assert record.actor_id == "mod"
        assert record.reason == "fake upload"

    def test_not_found(self, store, moderator):
        with pytest.raises(NotFoundError):
            store.transition_state(42, ModerationState.APPROVED, moderator)

    def test_history_empty_for_new_entry(self, store, entry):
        assert store.get_moderation_history(entry.id) == []

    def test_count_by_state(self, store, entry, moderator, torrent_tree):
        store.submit(validate(torrent_tree(name=b"other")), "bob", 1)
        store.transition_state(entry.id, ModerationState.APPROVED, moderator)
        assert store.count_entries() == 2
        assert store.count_entries(ModerationState.APPROVED) == 1
        assert store.count_entries(ModerationState.PENDING) == 1


class TestEdits:
    """Owner or moderator edits."""

    def test_owner_updates_category_and_tags(self, store, entry, alice):
        updated = store.update_category_tags(entry.id, alice, category_id=6, tags=["Docs"])
        assert updated.category_id == 6
        assert updated.tags == frozenset({"docs"})

    def test_tags_only(self, store, entry, moderator):
        updated = store.update_category_tags(entry.id, moderator, tags=[])
        assert updated.category_id == 5
        assert updated.tags == frozenset()

    def test_other_user_forbidden(self, store, entry, bob):
        with pytest.raises(ForbiddenError):
            store.update_category_tags(entry.id, bob, category_id=1)
        assert store.get_by_id(entry.id).category_id == 5

    def test_invalid_category_leaves_entry(self, store, entry, alice):
        with pytest.raises(InvalidCategoryError):
            store.update_category_tags(entry.id, alice, category_id=0, tags=["x"])
        assert store.get_by_id(entry.id).tags == frozenset({"linux"})

    def test_update_details(self, store, entry, alice):
        updated = store.update_details(entry.id, alice, description="Updated")
        assert updated.title == "Debian"
        assert updated.description == "Updated"

    def test_update_details_blank_title(self, store, entry, alice):
        with pytest.raises(MissingFieldError):
            store.update_details(entry.id, alice, title="")

    def test_update_details_forbidden(self, store, entry, bob):
        with pytest.raises(ForbiddenError):
            store.update_details(entry.id, bob, title="Mine now")


class TestDelete:
    """Removing entries."""

    def test_owner_deletes(self, store, entry, alice):
        store.delete(entry.id, alice)
        with pytest.raises(NotFoundError):
            store.get_by_id(entry.id)

    def test_moderator_deletes(self, store, entry, moderator):
        store.delete(entry.id, moderator)
        assert store.count_entries() == 0

    def test_other_user_forbidden(self, store, entry, bob):
        with pytest.raises(ForbiddenError):
            store.delete(entry.id, bob)
        assert store.count_entries() == 1

    def test_missing_entry_hidden_from_non_moderator(self, store, bob):
        with pytest.raises(ForbiddenError):
            store.delete(12345, bob)

    def test_missing_entry_reported_to_moderator(self, store, moderator):
        with pytest.raises(NotFoundError):
            store.delete(12345, moderator)

    def test_missing_entry_edit_hidden_from_non_moderator(self, store, bob):
        with pytest.raises(ForbiddenError):
            store.update_details(9999, bob, description="x")
        with pytest.raises(ForbiddenError):
            store.update_category_tags(9999, bob, tags=["x"])

    def test_missing_entry_edit_reported_to_moderator(self, store, moderator):
        with pytest.raises(NotFoundError):
            store.update_details(9999, moderator, description="x")

    def test_cascade(self, store, entry, moderator):
        store.transition_state(entry.id, ModerationState.APPROVED, moderator)
        store.delete(entry.id, moderator)
        with sqlite3.connect(store.database_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM entry_tags").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM moderation_log").fetchone()[0] == 0


class TestResubmit:
    """Re-uploading rejected entries."""

    @pytest.fixture
    def rejected(self, store, entry, moderator):
        return store.transition_state(entry.id, ModerationState.REJECTED, moderator, "bad")

    def test_resubmit_same_torrent(self, store, rejected, descriptor):
        new = store.resubmit(descriptor, "alice", rejected.id)
        assert new.id != rejected.id
        assert new.moderation_state == ModerationState.PENDING
        assert new.supersedes_id == rejected.id
        assert new.title == "Debian"
        assert new.tags == frozenset({"linux"})

        old = store.get_by_id(rejected.id)
        assert old.superseded
        assert old.moderation_state == ModerationState.REJECTED
        assert store.get_by_hash(info_hash.compute(descriptor)).id == new.id

    def test_resubmit_with_changes(self, store, rejected, torrent_tree):
        fixed = validate(torrent_tree(name=b"debian-fixed.iso"))
        new = store.resubmit(
            fixed, "alice", rejected.id, category_id=7, tags=["fixed"], title="Fixed"
        )
        assert new.category_id == 7
        assert new.tags == frozenset({"fixed"})
        assert new.title == "Fixed"

    def test_only_once(self, store, rejected, descriptor):
        store.resubmit(descriptor, "alice", rejected.id)
        with pytest.raises(ResubmissionNotAllowedError):
            store.resubmit(descriptor, "alice", rejected.id)

    def test_pending_entry_cannot_be_resubmitted(self, store, entry, descriptor):
        with pytest.raises(ResubmissionNotAllowedError):
            store.resubmit(descriptor, "alice", entry.id)

    def test_other_uploader_forbidden(self, store, rejected, descriptor):
        with pytest.raises(ForbiddenError):
            store.resubmit(descriptor, "bob", rejected.id)
        assert not store.get_by_id(rejected.id).superseded

    def test_missing_previous_looks_forbidden(self, store, descriptor):
        with pytest.raises(ForbiddenError):
            store.resubmit(descriptor, "alice", 999)

    def test_policy_forbid(self, tmp_path, torrent_tree, moderator):
        machine = ModerationStateMachine(
            ModerationConfig(resubmission_policy=ResubmissionPolicy.FORBID)
        )
        store = IndexStore(tmp_path / "forbid.db", state_machine=machine)
        descriptor = validate(torrent_tree())
        entry = store.submit(descriptor, "alice", 1)
        store.transition_state(entry.id, ModerationState.REJECTED, moderator, "no")
        with pytest.raises(ResubmissionNotAllowedError):
            store.resubmit(descriptor, "alice", entry.id)

    def test_duplicate_of_other_live_entry(self, store, rejected, torrent_tree):
        other = validate(torrent_tree(name=b"other.iso"))
        existing = store.submit(other, "bob", 1)
        with pytest.raises(DuplicateTorrentError) as exc_info:
            store.resubmit(other, "alice", rejected.id)
        assert exc_info.value.existing_id == existing.id
        # Rolled back together with the failed insert
        assert not store.get_by_id(rejected.id).superseded


class TestEvents:
    """Events are emitted after commit."""

    def test_lifecycle_events(self, store, event_bus, entry, moderator):
        store.transition_state(entry.id, ModerationState.APPROVED, moderator)
        store.delete(entry.id, moderator)
        types = [e.event_type for e in event_bus.get_history()]
        assert types == [
            EventType.ENTRY_SUBMITTED.value,
            EventType.ENTRY_APPROVED.value,
            EventType.ENTRY_DELETED.value,
        ]

    def test_rejected_event_carries_reason(self, store, event_bus, entry, moderator):
        store.transition_state(entry.id, ModerationState.REJECTED, moderator, "dup")
        (event,) = event_bus.get_history(EventType.ENTRY_REJECTED)
        assert event.data["reason"] == "dup"
        assert event.data["uploader_id"] == "alice"

    def test_no_event_on_failure(self, store, event_bus, entry, descriptor):
        event_bus.clear_history()
        with pytest.raises(DuplicateTorrentError):
            store.submit(descriptor, "bob", 1)
        assert event_bus.get_history() == []

    def test_failing_handler_does_not_undo(self, store, event_bus, descriptor):
        def broken(event):
            raise RuntimeError("mail server down")

        event_bus.subscribe(EventType.ENTRY_SUBMITTED, broken)
        entry = store.submit(descriptor, "alice", 1)
        assert store.get_by_id(entry.id) == entry
        assert event_bus.failed_deliveries == 1


class TestTransientFaults:
    """Reads retry once; writes surface the fault."""

    @pytest.fixture
    def flaky_store(self, tmp_path):
        return IndexStore(tmp_path / "flaky.db", config=StorageConfig(read_retry_delay=0.0))

    def _fail_next_connects(self, monkeypatch, store, failures):
        original = store._connect
        calls = {"count": 0}

        def connect():
            calls["count"] += 1
            if calls["count"] <= failures:
                raise sqlite3.OperationalError("database is locked")
            return original()

        monkeypatch.setattr(store, "_connect", connect)
        return calls

    def test_read_retried_once(self, monkeypatch, flaky_store, descriptor):
        entry = flaky_store.submit(descriptor, "alice", 1)
        calls = self._fail_next_connects(monkeypatch, flaky_store, 1)
        assert flaky_store.get_by_id(entry.id) == entry
        assert calls["count"] == 2

    def test_read_gives_up_after_retry(self, monkeypatch, flaky_store):
        calls = self._fail_next_connects(monkeypatch, flaky_store, 2)
        with pytest.raises(TransientStorageError):
            flaky_store.count_entries()
        assert calls["count"] == 2

    def test_write_not_retried(self, monkeypatch, flaky_store, descriptor):
        calls = self._fail_next_connects(monkeypatch, flaky_store, 1)
        with pytest.raises(TransientStorageError):
            flaky_store.submit(descriptor, "alice", 1)
        assert calls["count"] == 1
