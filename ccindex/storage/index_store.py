"""SQLite-backed index store.

Persists index entries, their tags and the moderation audit trail. Every
public operation opens its own connection and runs in a single transaction,
so the store can be shared by any number of request-handling threads.

Duplicate detection relies on a partial unique index over the info-hash of
live (not superseded) entries: the check and the insert are one statement
inside one ``BEGIN IMMEDIATE`` transaction, so concurrent uploads of the same
torrent produce exactly one entry.
"""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, TypeVar

from ccindex.core import info_hash as info_hash_engine
from ccindex.core.bencode import encode
from ccindex.models import (
    EntrySummary,
    IndexEntry,
    ListingFilter,
    ListingSort,
    ModerationRecord,
    ModerationState,
    Principal,
    SortField,
    SortOrder,
    StorageConfig,
    TorrentDescriptor,
)
from ccindex.services.auth import AuthContext, RoleAuthContext
from ccindex.services.moderation import ModerationStateMachine
from ccindex.services.taxonomy import StaticTaxonomy, Taxonomy, check_category, check_tags
from ccindex.utils.events import (
    EntryApprovedEvent,
    EntryDeletedEvent,
    EntryRejectedEvent,
    EntrySubmittedEvent,
    Event,
    EventBus,
)
from ccindex.utils.exceptions import (
    DuplicateTorrentError,
    ForbiddenError,
    InvalidTransitionError,
    MissingFieldError,
    NotFoundError,
    StorageError,
    TransientStorageError,
)
from ccindex.utils.logging_config import LoggingContext, get_logger
from ccindex.utils.resilience import with_retry

T = TypeVar("T")

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        info_hash BLOB NOT NULL CHECK (length(info_hash) = 20),
        descriptor BLOB NOT NULL,
        name TEXT NOT NULL,
        total_length INTEGER NOT NULL,
        file_count INTEGER NOT NULL,
        uploader_id TEXT NOT NULL,
        category_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        moderation_state TEXT NOT NULL
            CHECK (moderation_state IN ('pending', 'approved', 'rejected')),
        supersedes_id INTEGER REFERENCES entries(id) ON DELETE SET NULL,
        superseded INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_entries_live_hash
    ON entries(info_hash) WHERE superseded = 0
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_entries_state_created
    ON entries(moderation_state, created_at)
    """,
    "CREATE INDEX IF NOT EXISTS idx_entries_category ON entries(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_entries_uploader ON entries(uploader_id)",
    """
    CREATE TABLE IF NOT EXISTS entry_tags (
        entry_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        tag TEXT NOT NULL,
        PRIMARY KEY (entry_id, tag)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entry_tags_tag ON entry_tags(tag)",
    """
    CREATE TABLE IF NOT EXISTS moderation_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entry_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        from_state TEXT NOT NULL,
        to_state TEXT NOT NULL,
        actor_id TEXT NOT NULL,
        reason TEXT,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_moderation_log_entry
    ON moderation_log(entry_id)
    """,
]

_ENTRY_COLUMNS = (
    "id, info_hash, descriptor, name, total_length, file_count, uploader_id, "
    "category_id, title, description, moderation_state, supersedes_id, "
    "superseded, created_at, updated_at"
)

_SUMMARY_COLUMNS = (
    "id, info_hash, title, name, category_id, uploader_id, total_length, "
    "file_count, moderation_state, created_at"
)

_SORT_COLUMNS = {
    SortField.CREATED_AT: "created_at",
    SortField.TITLE: "title COLLATE NOCASE",
    SortField.SIZE: "total_length",
}


@dataclass
class ListingQuery:
    """Normalized listing request, as produced by the listing engine."""

    states: frozenset[ModerationState]
    listing_filter: ListingFilter = field(default_factory=ListingFilter)
    sort: ListingSort = field(default_factory=ListingSort)
    offset: int = 0
    limit: int = 30


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


class IndexStore:
    """Catalog of uploaded torrents.

    Attributes:
        database_path: SQLite database file
        taxonomy: Category/tag vocabulary checks
        auth: Ownership and moderator checks
        state_machine: Moderation transition rules
        events: Bus receiving catalog events after each commit

    """

    def __init__(
        self,
        database_path: Path | str | None = None,
        config: StorageConfig | None = None,
        taxonomy: Taxonomy | None = None,
        auth: AuthContext | None = None,
        state_machine: ModerationStateMachine | None = None,
        event_bus: EventBus | None = None,
    ):
        """Initialize the store and create the schema if needed.

        Args:
            database_path: Overrides ``config.database_path``
            config: Storage configuration
            taxonomy: Category/tag checks (defaults to the built-in vocabulary)
            auth: Auth context (defaults to role based)
            state_machine: Moderation rules (defaults to the default policy)
            event_bus: Event bus for catalog notifications

        """
        self.config = config or StorageConfig()
        self.database_path = Path(database_path or self.config.database_path)
        self.taxonomy = taxonomy or StaticTaxonomy()
        self.auth = auth or RoleAuthContext()
        self.state_machine = state_machine or ModerationStateMachine()
        self.events = event_bus or EventBus()

        self._read_with_retry = with_retry(
            retries=1,
            delay=self.config.read_retry_delay,
            exceptions=(TransientStorageError,),
        )(self._read_once)

        self.initialize()

    # Connections and transactions

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.database_path),
            timeout=self.config.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        return conn

    @contextmanager
    def _transaction(self, write: bool) -> Iterator[sqlite3.Connection]:
        """Run the body in one transaction on a fresh connection.

        Write transactions take the database write lock up front so that
        concurrent read-check-write sequences serialize instead of failing
        on lock upgrade.
        """
        conn: sqlite3.Connection | None = None
        try:
            conn = self._connect()
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            msg = f"Storage unavailable: {e}"
            raise TransientStorageError(msg, {"database": str(self.database_path)}) from e
        except sqlite3.Error as e:
            msg = f"Storage failure: {e}"
            raise StorageError(msg, {"database": str(self.database_path)}) from e
        finally:
            if conn is not None:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                conn.close()

    def _read_once(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self._transaction(write=False) as conn:
            return fn(conn)

    def _read(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run an idempotent read, retrying once on a transient fault."""
        return self._read_with_retry(fn)

    def _write(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run a mutation. Writes are never retried."""
        with self._transaction(write=True) as conn:
            return fn(conn)

    def _emit(self, event: Event) -> None:
        self.events.emit(event)

    def initialize(self) -> None:
        """Create tables and indexes. Safe to call repeatedly."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            msg = f"Cannot open database: {e}"
            raise StorageError(msg, {"database": str(self.database_path)}) from e
        try:
            conn.execute(f"PRAGMA journal_mode = {self.config.journal_mode}")
        except sqlite3.Error as e:
            conn.close()
            msg = f"Cannot configure database: {e}"
            raise StorageError(msg, {"database": str(self.database_path)}) from e
        conn.close()

        def create(conn: sqlite3.Connection) -> int:
            for statement in _SCHEMA:
                conn.execute(statement)
            row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
            version = row[0]
            if version is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, time.time()),
                )
                version = SCHEMA_VERSION
            return version

        version = self._write(create)
        logger.debug("Index store ready at %s (schema v%d)", self.database_path, version)

    # Row mapping

    def _tags_for(
        self, conn: sqlite3.Connection, entry_ids: Iterable[int]
    ) -> dict[int, list[str]]:
        ids = list(entry_ids)
        tags: dict[int, list[str]] = {entry_id: [] for entry_id in ids}
        if not ids:
            return tags
        placeholders = ", ".join("?" for _ in ids)
        rows = conn.execute(
            f"SELECT entry_id, tag FROM entry_tags WHERE entry_id IN ({placeholders}) "  # nosec B608
            "ORDER BY tag",
            ids,
        )
        for row in rows:
            tags[row["entry_id"]].append(row["tag"])
        return tags

    def _entry_from_row(self, row: sqlite3.Row, tags: Iterable[str]) -> IndexEntry:
        return IndexEntry(
            id=row["id"],
            info_hash=bytes(row["info_hash"]),
            descriptor=bytes(row["descriptor"]),
            name=row["name"],
            total_length=row["total_length"],
            file_count=row["file_count"],
            uploader_id=row["uploader_id"],
            category_id=row["category_id"],
            tags=frozenset(tags),
            title=row["title"],
            description=row["description"],
            moderation_state=ModerationState(row["moderation_state"]),
            supersedes_id=row["supersedes_id"],
            superseded=bool(row["superseded"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _load_entry(self, conn: sqlite3.Connection, entry_id: int) -> IndexEntry | None:
        row = conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE id = ?",  # nosec B608
            (entry_id,),
        ).fetchone()
        if row is None:
            return None
        return self._entry_from_row(row, self._tags_for(conn, [entry_id])[entry_id])

    def _require_entry(self, conn: sqlite3.Connection, entry_id: int) -> IndexEntry:
        entry = self._load_entry(conn, entry_id)
        if entry is None:
            msg = f"Entry {entry_id} not found"
            raise NotFoundError(msg, {"entry_id": entry_id})
        return entry

    def _require_modifiable(
        self, conn: sqlite3.Connection, entry_id: int, actor: Principal
    ) -> IndexEntry:
        """Load an entry the actor may change, or fail.

        Non-moderators get :class:`ForbiddenError` for missing entries too,
        so they cannot probe which ids exist.
        """
        is_moderator = self.auth.is_moderator(actor)
        entry = self._load_entry(conn, entry_id)
        if entry is None:
            if not is_moderator:
                raise ForbiddenError()
            msg = f"Entry {entry_id} not found"
            raise NotFoundError(msg, {"entry_id": entry_id})
        if not (is_moderator or self.auth.owns(actor, entry)):
            raise ForbiddenError()
        return entry

    def _insert_entry(
        self,
        conn: sqlite3.Connection,
        descriptor: TorrentDescriptor,
        info_hash: bytes,
        uploader_id: str,
        category_id: int,
        tags: frozenset[str],
        title: str,
        description: str,
        supersedes_id: int | None = None,
    ) -> IndexEntry:
        now = time.time()
        try:
            cursor = conn.execute(
                "INSERT INTO entries (info_hash, descriptor, name, total_length, "
                "file_count, uploader_id, category_id, title, description, "
                "moderation_state, supersedes_id, superseded, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)",
                (
                    info_hash,
                    encode(descriptor.raw),
                    descriptor.name,
                    descriptor.total_length,
                    descriptor.file_count,
                    uploader_id,
                    category_id,
                    title,
                    description,
                    ModerationState.PENDING.value,
                    supersedes_id,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as e:
            # The failed statement is undone; the transaction is still open
            row = conn.execute(
                "SELECT id FROM entries WHERE info_hash = ? AND superseded = 0",
                (info_hash,),
            ).fetchone()
            if row is None:
                raise
            raise DuplicateTorrentError(row["id"], info_hash.hex()) from e

        entry_id = cursor.lastrowid
        conn.executemany(
            "INSERT INTO entry_tags (entry_id, tag) VALUES (?, ?)",
            [(entry_id, tag) for tag in sorted(tags)],
        )
        return self._require_entry(conn, entry_id)

    def _check_text(self, title: str | None, fallback: str) -> str:
        title = (title if title is not None else fallback).strip()
        if not title:
            raise MissingFieldError("title")
        return title

    # Mutations

    def submit(
        self,
        descriptor: TorrentDescriptor,
        uploader_id: str,
        category_id: int,
        tags: Iterable[str] = (),
        title: str | None = None,
        description: str = "",
    ) -> IndexEntry:
        """Store a validated descriptor as a new pending entry.

        Args:
            descriptor: Validated torrent descriptor
            uploader_id: Id of the uploading user
            category_id: Category id known to the taxonomy
            tags: Tags; normalized to trimmed lowercase
            title: Listing title (defaults to the torrent name)
            description: Listing description

        Returns:
            The stored entry

        Raises:
            InvalidCategoryError: Unknown category
            InvalidTagError: Tag not allowed by the taxonomy
            DuplicateTorrentError: A live entry already has this info-hash

        """
        check_category(self.taxonomy, category_id)
        normalized_tags = check_tags(self.taxonomy, tags)
        title = self._check_text(title, descriptor.name)
        info_hash = info_hash_engine.compute(descriptor)

        with LoggingContext(
            "torrent_submit",
            logger=logger,
            info_hash=info_hash.hex(),
            uploader_id=uploader_id,
        ):
            entry = self._write(
                lambda conn: self._insert_entry(
                    conn,
                    descriptor,
                    info_hash,
                    uploader_id,
                    category_id,
                    normalized_tags,
                    title,
                    description,
                )
            )

        self._emit(
            EntrySubmittedEvent(
                source="index_store",
                entry_id=entry.id,
                info_hash=entry.info_hash_hex,
                uploader_id=uploader_id,
                title=entry.title,
            )
        )
        return entry

    def resubmit(
        self,
        descriptor: TorrentDescriptor,
        uploader_id: str,
        previous_entry_id: int,
        category_id: int | None = None,
        tags: Iterable[str] | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> IndexEntry:
        """Re-upload a rejected entry.

        The previous entry stays rejected and is marked superseded; the new
        entry starts pending and records which entry it replaces. Omitted
        classification and text fields are carried over from the previous
        entry.

        Raises:
            ForbiddenError: Caller did not upload the previous entry, or it
                does not exist
            ResubmissionNotAllowedError: Policy forbids it, or the previous
                entry is not rejected or was already replaced
            DuplicateTorrentError: Another live entry has this info-hash

        """
        if category_id is not None:
            check_category(self.taxonomy, category_id)
        normalized_tags = None if tags is None else check_tags(self.taxonomy, tags)
        info_hash = info_hash_engine.compute(descriptor)

        def replace(conn: sqlite3.Connection) -> IndexEntry:
            previous = self._load_entry(conn, previous_entry_id)
            # Only the uploader may resubmit, so a missing entry looks the same
            if previous is None or previous.uploader_id != uploader_id:
                raise ForbiddenError()
            self.state_machine.check_resubmission(
                previous.moderation_state, previous.superseded, previous.id
            )
            conn.execute(
                "UPDATE entries SET superseded = 1, updated_at = ? "
                "WHERE id = ? AND superseded = 0",
                (time.time(), previous.id),
            )
            return self._insert_entry(
                conn,
                descriptor,
                info_hash,
                uploader_id,
                previous.category_id if category_id is None else category_id,
                previous.tags if normalized_tags is None else normalized_tags,
                self._check_text(title, previous.title),
                previous.description if description is None else description,
                supersedes_id=previous.id,
            )

        with LoggingContext(
            "torrent_resubmit",
            logger=logger,
            info_hash=info_hash.hex(),
            uploader_id=uploader_id,
            previous_entry_id=previous_entry_id,
        ):
            entry = self._write(replace)

        self._emit(
            EntrySubmittedEvent(
                source="index_store",
                entry_id=entry.id,
                info_hash=entry.info_hash_hex,
                uploader_id=uploader_id,
                title=entry.title,
                supersedes_id=previous_entry_id,
            )
        )
        return entry

    def _modify(
        self,
        entry_id: int,
        actor: Principal,
        apply: Callable[[sqlite3.Connection, IndexEntry], None],
    ) -> IndexEntry:
        """Apply an owner-or-moderator edit in one write transaction."""

        def run(conn: sqlite3.Connection) -> IndexEntry:
            entry = self._require_modifiable(conn, entry_id, actor)
            apply(conn, entry)
            conn.execute(
                "UPDATE entries SET updated_at = ? WHERE id = ?",
                (time.time(), entry_id),
            )
            return self._require_entry(conn, entry_id)

        return self._write(run)

    def update_category_tags(
        self,
        entry_id: int,
        actor: Principal,
        category_id: int | None = None,
        tags: Iterable[str] | None = None,
    ) -> IndexEntry:
        """Change an entry's category and/or replace its tag set.

        Raises:
            NotFoundError: Entry does not exist (moderators only)
            ForbiddenError: Actor is neither the uploader nor a moderator
            InvalidCategoryError: Unknown category
            InvalidTagError: Tag not allowed by the taxonomy

        """
        if category_id is not None:
            check_category(self.taxonomy, category_id)
        normalized_tags = None if tags is None else check_tags(self.taxonomy, tags)

        def apply(conn: sqlite3.Connection, entry: IndexEntry) -> None:
            if category_id is not None:
                conn.execute(
                    "UPDATE entries SET category_id = ? WHERE id = ?",
                    (category_id, entry.id),
                )
            if normalized_tags is not None:
                conn.execute("DELETE FROM entry_tags WHERE entry_id = ?", (entry.id,))
                conn.executemany(
                    "INSERT INTO entry_tags (entry_id, tag) VALUES (?, ?)",
                    [(entry.id, tag) for tag in sorted(normalized_tags)],
                )

        return self._modify(entry_id, actor, apply)

    def update_details(
        self,
        entry_id: int,
        actor: Principal,
        title: str | None = None,
        description: str | None = None,
    ) -> IndexEntry:
        """Change an entry's title and/or description (owner or moderator)."""
        if title is not None:
            title = self._check_text(title, "")

        def apply(conn: sqlite3.Connection, entry: IndexEntry) -> None:
            if title is not None:
                conn.execute(
                    "UPDATE entries SET title = ? WHERE id = ?", (title, entry.id)
                )
            if description is not None:
                conn.execute(
                    "UPDATE entries SET description = ? WHERE id = ?",
                    (description, entry.id),
                )

        return self._modify(entry_id, actor, apply)

    def transition_state(
        self,
        entry_id: int,
        new_state: ModerationState,
        actor: Principal,
        reason: str | None = None,
    ) -> IndexEntry:
        """Approve or reject a pending entry.

        Raises:
            ForbiddenError: Actor is not a moderator
            NotFoundError: Entry does not exist
            InvalidTransitionError: Entry is not pending
            ReasonRequiredError: Rejection without a reason

        """
        if not self.auth.is_moderator(actor):
            raise ForbiddenError()
        new_state = ModerationState(new_state)

        def run(conn: sqlite3.Connection) -> tuple[IndexEntry, str | None]:
            entry = self._require_entry(conn, entry_id)
            normalized = self.state_machine.check_transition(
                entry.moderation_state, new_state, reason, entry_id
            )
            now = time.time()
            cursor = conn.execute(
                "UPDATE entries SET moderation_state = ?, updated_at = ? "
                "WHERE id = ? AND moderation_state = ?",
                (new_state.value, now, entry_id, entry.moderation_state.value),
            )
            if cursor.rowcount != 1:
                raise InvalidTransitionError(
                    entry_id, entry.moderation_state.value, new_state.value
                )
            conn.execute(
                "INSERT INTO moderation_log "
                "(entry_id, from_state, to_state, actor_id, reason, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry_id,
                    entry.moderation_state.value,
                    new_state.value,
                    actor.user_id,
                    normalized,
                    now,
                ),
            )
            return self._require_entry(conn, entry_id), normalized

        with LoggingContext(
            "entry_transition",
            logger=logger,
            entry_id=entry_id,
            target_state=new_state.value,
            actor_id=actor.user_id,
        ):
            entry, normalized_reason = self._write(run)

        if new_state == ModerationState.APPROVED:
            event: Event = EntryApprovedEvent(
                source="index_store",
                entry_id=entry.id,
                info_hash=entry.info_hash_hex,
                uploader_id=entry.uploader_id,
                actor_id=actor.user_id,
            )
        else:
            event = EntryRejectedEvent(
                source="index_store",
                entry_id=entry.id,
                info_hash=entry.info_hash_hex,
                uploader_id=entry.uploader_id,
                actor_id=actor.user_id,
                reason=normalized_reason,
            )
        self._emit(event)
        return entry

    def delete(self, entry_id: int, actor: Principal) -> None:
        """Remove an entry with its tags and audit trail.

        Callers without moderator privilege cannot tell a missing entry
        from one they may not delete: both raise :class:`ForbiddenError`.

        Raises:
            ForbiddenError: Actor is neither the uploader nor a moderator
            NotFoundError: Entry does not exist (moderators only)

        """
        def run(conn: sqlite3.Connection) -> IndexEntry:
            entry = self._require_modifiable(conn, entry_id, actor)
            conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            return entry

        with LoggingContext(
            "entry_delete", logger=logger, entry_id=entry_id, actor_id=actor.user_id
        ):
            entry = self._write(run)

        self._emit(
            EntryDeletedEvent(
                source="index_store",
                entry_id=entry.id,
                info_hash=entry.info_hash_hex,
                actor_id=actor.user_id,
            )
        )

    # Reads

    def get_by_id(self, entry_id: int) -> IndexEntry:
        """Return an entry by id.

        Raises:
            NotFoundError: No such entry

        """
        return self._read(lambda conn: self._require_entry(conn, entry_id))

    def get_by_hash(self, info_hash: bytes | str) -> IndexEntry:
        """Return the live entry for an info-hash (raw bytes or hex)."""
        if isinstance(info_hash, str):
            info_hash = info_hash_engine.from_hex(info_hash)

        def run(conn: sqlite3.Connection) -> IndexEntry:
            row = conn.execute(
                "SELECT id FROM entries WHERE info_hash = ? AND superseded = 0",
                (info_hash,),
            ).fetchone()
            if row is None:
                msg = "No entry for info hash"
                raise NotFoundError(msg, {"info_hash": info_hash.hex()})
            return self._require_entry(conn, row["id"])

        return self._read(run)

    def get_moderation_history(self, entry_id: int) -> list[ModerationRecord]:
        """Return the moderation audit trail of an entry, oldest first."""

        def run(conn: sqlite3.Connection) -> list[ModerationRecord]:
            self._require_entry(conn, entry_id)
            rows = conn.execute(
                "SELECT entry_id, from_state, to_state, actor_id, reason, created_at "
                "FROM moderation_log WHERE entry_id = ? ORDER BY id",
                (entry_id,),
            )
            return [ModerationRecord(**dict(row)) for row in rows]

        return self._read(run)

    def count_entries(self, state: ModerationState | None = None) -> int:
        """Number of entries, optionally restricted to one state."""

        def run(conn: sqlite3.Connection) -> int:
            if state is None:
                row = conn.execute("SELECT COUNT(*) FROM entries").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM entries WHERE moderation_state = ?",
                    (ModerationState(state).value,),
                ).fetchone()
            return row[0]

        return self._read(run)

    def run_listing(self, query: ListingQuery) -> tuple[int, list[EntrySummary]]:
        """Count and fetch one page of entries in a single read transaction."""
        clauses: list[str] = []
        params: list[Any] = []

        states = sorted(s.value for s in query.states)
        clauses.append(f"moderation_state IN ({', '.join('?' for _ in states)})")
        params.extend(states)

        flt = query.listing_filter
        if flt.category_ids:
            ids = sorted(flt.category_ids)
            clauses.append(f"category_id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if flt.tags:
            tags = sorted(flt.tags)
            clauses.append(
                "EXISTS (SELECT 1 FROM entry_tags t WHERE t.entry_id = entries.id "
                f"AND t.tag IN ({', '.join('?' for _ in tags)}))"
            )
            params.extend(tags)
        if flt.uploader_id is not None:
            clauses.append("uploader_id = ?")
            params.append(flt.uploader_id)
        if flt.text:
            # Literal substring match; no LIKE wildcards involved
            clauses.append(
                "(instr(casefold(title), ?) > 0 OR instr(casefold(description), ?) > 0)"
            )
            needle = flt.text.casefold()
            params.extend([needle, needle])

        where = " AND ".join(clauses)
        direction = "ASC" if query.sort.order == SortOrder.ASC else "DESC"
        order = f"{_SORT_COLUMNS[query.sort.key]} {direction}, id ASC"

        def run(conn: sqlite3.Connection) -> tuple[int, list[EntrySummary]]:
            total = conn.execute(
                f"SELECT COUNT(*) FROM entries WHERE {where}",  # nosec B608
                params,
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM entries WHERE {where} "  # nosec B608
                f"ORDER BY {order} LIMIT ? OFFSET ?",
                [*params, query.limit, query.offset],
            ).fetchall()
            tags = self._tags_for(conn, [row["id"] for row in rows])
            items = [
                EntrySummary(
                    id=row["id"],
                    info_hash=bytes(row["info_hash"]).hex(),
                    title=row["title"],
                    name=row["name"],
                    category_id=row["category_id"],
                    uploader_id=row["uploader_id"],
                    tags=tags[row["id"]],
                    total_length=row["total_length"],
                    file_count=row["file_count"],
                    moderation_state=ModerationState(row["moderation_state"]),
                    created_at=row["created_at"],
                )
                for row in rows
            ]
            return total, items

        return self._read(run)
