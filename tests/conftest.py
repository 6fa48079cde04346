"""Pytest configuration and shared fixtures for ccIndex tests."""

from __future__ import annotations

import hashlib
import logging
import os
from typing import Any, Callable

import pytest

from ccindex.core.bencode import encode
from ccindex.models import Principal
from ccindex.services.ingest import IngestService
from ccindex.services.listing import ListingEngine
from ccindex.storage.index_store import IndexStore
from ccindex.utils.events import EventBus


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("core", "marks tests as core functionality tests"),
        ("storage", "marks tests as storage tests"),
        ("services", "marks tests as service layer tests"),
        ("cli", "marks tests as CLI tests"),
        ("property", "marks tests as property-based tests"),
        ("slow", "marks tests as slow (deselect with '-m \"not slow\"')"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_ccindex_env(monkeypatch):
    """Keep the developer's CCINDEX_* environment out of tests."""
    for name in list(os.environ):
        if name.startswith("CCINDEX_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


def _pieces(total_length: int, piece_length: int) -> bytes:
    count = -(-total_length // piece_length)
    return b"".join(hashlib.sha1(b"piece%d" % i).digest() for i in range(count))


def build_torrent_tree(
    name: bytes = b"example.iso",
    length: int | None = 100_000,
    files: list[tuple[list[bytes], int]] | None = None,
    piece_length: int = 16384,
    announce: bytes | None = b"http://tracker.example/announce",
    announce_list: list[list[bytes]] | None = None,
    **outer: Any,
) -> dict[bytes, Any]:
    """Build a decoded torrent tree with consistent piece hashes."""
    info: dict[bytes, Any] = {b"name": name, b"piece length": piece_length}
    if files is not None:
        info[b"files"] = [{b"path": path, b"length": size} for path, size in files]
        total = sum(size for _, size in files)
    else:
        info[b"length"] = length
        total = length or 0
    info[b"pieces"] = _pieces(total, piece_length)

    tree: dict[bytes, Any] = {b"info": info}
    if announce is not None:
        tree[b"announce"] = announce
    if announce_list is not None:
        tree[b"announce-list"] = announce_list
    for key, value in outer.items():
        tree[key.replace("_", " ").encode()] = value
    return tree


@pytest.fixture
def torrent_tree() -> Callable[..., dict[bytes, Any]]:
    """Factory for decoded torrent trees."""
    return build_torrent_tree


@pytest.fixture
def torrent_bytes() -> Callable[..., bytes]:
    """Factory for encoded torrent files."""

    def factory(**kwargs: Any) -> bytes:
        return encode(build_torrent_tree(**kwargs))

    return factory


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(tmp_path, event_bus) -> IndexStore:
    """Index store on a fresh database."""
    return IndexStore(tmp_path / "index.db", event_bus=event_bus)


@pytest.fixture
def ingest(store) -> IngestService:
    return IngestService(store)


@pytest.fixture
def listing(store) -> ListingEngine:
    return ListingEngine(store)


@pytest.fixture
def alice() -> Principal:
    return Principal(user_id="alice")


@pytest.fixture
def bob() -> Principal:
    return Principal(user_id="bob")


@pytest.fixture
def moderator() -> Principal:
    return Principal(user_id="mod", roles=frozenset({"moderator"}))
