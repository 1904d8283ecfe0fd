"""
Event definitions for the Parley Chat change feed.

The conversation store publishes row-insert events, the identity provider
publishes auth state changes, and the UI subscribes to both through the
:class:`parley_chat.core.event_bus.EventBus`.
"""

import uuid
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union, Callable, Awaitable


@dataclass
class Event:
    """Base event class for all events in the system."""

    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    # Auto-populated fields
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        """Ensure timestamp is timezone-aware."""
        if self.timestamp.tzinfo is None:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)


SyncEventHandler = Callable[[Event], Any]
AsyncEventHandler = Callable[[Event], Awaitable[Any]]
EventHandler = Union[SyncEventHandler, AsyncEventHandler]


class StandardEventTypes:
    """Event types used throughout Parley Chat."""

    # Change feed (row inserts)
    DB_CONVERSATION_INSERTED = "db.conversations.insert"
    DB_MESSAGE_INSERTED = "db.messages.insert"

    # Identity
    AUTH_STATE_CHANGED = "auth.state.changed"


def create_insert_event(table: str, record: Dict[str, Any]) -> Event:
    """
    Helper for change-feed events: ``data`` carries the table name and the
    inserted row under ``new``.
    """
    return Event(
        event_type=f"db.{table}.insert",
        data={"table": table, "type": "INSERT", "new": dict(record)},
        source="store",
    )


def create_auth_event(user_id: Optional[str], signed_in: bool) -> Event:
    """Helper for identity changes (sign-in, sign-out)."""
    return Event(
        event_type=StandardEventTypes.AUTH_STATE_CHANGED,
        data={"user_id": user_id, "signed_in": signed_in},
        source="identity",
    )
