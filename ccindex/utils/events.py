"""Catalog events for ccIndex.

The index store emits typed events after a mutation has committed. External
notification systems (e-mail, webhooks) subscribe to the :class:`EventBus`.
A failing handler is logged and skipped; it never undoes the mutation that
produced the event.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ccindex.utils.logging_config import get_correlation_id, get_logger

logger = get_logger(__name__)


class EventType(Enum):
    """Catalog event types."""

    ENTRY_SUBMITTED = "entry_submitted"
    ENTRY_APPROVED = "entry_approved"
    ENTRY_REJECTED = "entry_rejected"
    ENTRY_DELETED = "entry_deleted"


@dataclass
class Event:
    """Base event class."""

    event_type: str = ""
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = field(default_factory=get_correlation_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "event_id": self.event_id,
            "source": self.source,
            "data": self.data,
            "correlation_id": self.correlation_id,
        }

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class EntrySubmittedEvent(Event):
    """Emitted when a new entry is stored as pending."""

    entry_id: int = 0
    info_hash: str = ""
    uploader_id: str = ""
    title: str = ""
    supersedes_id: int | None = None

    def __post_init__(self):
        """Initialize event type and data."""
        self.event_type = EventType.ENTRY_SUBMITTED.value
        self.data.update(
            {
                "entry_id": self.entry_id,
                "info_hash": self.info_hash,
                "uploader_id": self.uploader_id,
                "title": self.title,
                "supersedes_id": self.supersedes_id,
            },
        )


@dataclass
class EntryApprovedEvent(Event):
    """Emitted when a moderator approves an entry."""

    entry_id: int = 0
    info_hash: str = ""
    uploader_id: str = ""
    actor_id: str = ""

    def __post_init__(self):
        """Initialize event type and data."""
        self.event_type = EventType.ENTRY_APPROVED.value
        self.data.update(
            {
                "entry_id": self.entry_id,
                "info_hash": self.info_hash,
                "uploader_id": self.uploader_id,
                "actor_id": self.actor_id,
            },
        )


@dataclass
class EntryRejectedEvent(Event):
    """Emitted when a moderator rejects an entry."""

    entry_id: int = 0
    info_hash: str = ""
    uploader_id: str = ""
    actor_id: str = ""
    reason: str | None = None

    def __post_init__(self):
        """Initialize event type and data."""
        self.event_type = EventType.ENTRY_REJECTED.value
        self.data.update(
            {
                "entry_id": self.entry_id,
                "info_hash": self.info_hash,
                "uploader_id": self.uploader_id,
                "actor_id": self.actor_id,
                "reason": self.reason,
            },
        )


@dataclass
class EntryDeletedEvent(Event):
    """Emitted when an entry is removed from the catalog."""

    entry_id: int = 0
    info_hash: str = ""
    actor_id: str = ""

    def __post_init__(self):
        """Initialize event type and data."""
        self.event_type = EventType.ENTRY_DELETED.value
        self.data.update(
            {
                "entry_id": self.entry_id,
                "info_hash": self.info_hash,
                "actor_id": self.actor_id,
            },
        )


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe bus.

    Handlers run on the emitting thread, after the store transaction has
    committed. Subscriptions are keyed by event type value; ``"*"``
    receives every event.
    """

    def __init__(self, history_size: int = 1000):
        """Initialize event bus.

        Args:
            history_size: Number of recent events kept for replay

        """
        self._handlers: dict[str, list[EventHandler]] = {}
        self._history: deque[Event] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self.failed_deliveries = 0

    def subscribe(self, event_type: EventType | str, handler: EventHandler) -> None:
        """Register a handler for an event type."""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        with self._lock:
            handlers = self._handlers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event: Event) -> int:
        """Deliver an event to its handlers.

        Returns:
            Number of handlers that processed the event successfully

        """
        with self._lock:
            self._history.append(event)
            handlers = [
                *self._handlers.get(event.event_type, []),
                *self._handlers.get("*", []),
            ]

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                # Delivery failures stay with the notification side
                with self._lock:
                    self.failed_deliveries += 1
                logger.exception(
                    "Event handler failed for %s (event %s)",
                    event.event_type,
                    event.event_id,
                )
        return delivered

    def get_history(self, event_type: EventType | str | None = None) -> list[Event]:
        """Return recent events, optionally filtered by type."""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        with self._lock:
            events = list(self._history)
        if key is None:
            return events
        return [e for e in events if e.event_type == key]

    def clear_history(self) -> None:
        """Drop the replay history."""
        with self._lock:
            self._history.clear()
