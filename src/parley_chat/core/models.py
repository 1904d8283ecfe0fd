"""
Plain data types passed between the adapters, the session and the UI.

These are deliberately detached from the SQLAlchemy rows in
:mod:`parley_chat.db_models` so they can cross the event bus and be kept in UI
state without an open database session.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Who authored a message."""
    USER = "user"
    AI = "AI"


ROLES = {role.value for role in Role}


def new_nonce() -> str:
    """Client-generated key used to recognise our own messages on the change feed."""
    return uuid.uuid4().hex


@dataclass
class ChatMessage:
    """A single chat message, persisted or about to be."""

    conversation_id: str
    user_id: str
    role: str
    message: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    nonce: Optional[str] = None

    @property
    def dedup_key(self) -> Optional[str]:
        """Identity of the logical message, stable across its optimistic and echoed copies."""
        if self.nonce:
            return f"nonce:{self.nonce}"
        if self.id is not None:
            return f"id:{self.id}"
        return None

    def with_store_fields(self, id: int, created_at: datetime) -> "ChatMessage":
        return replace(self, id=id, created_at=created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "role": self.role,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            conversation_id=data["conversation_id"],
            user_id=data["user_id"],
            role=data["role"],
            message=data["message"],
            id=data.get("id"),
            created_at=created_at,
            nonce=data.get("nonce"),
        )


@dataclass(frozen=True)
class Identity:
    """Read-only, session-scoped copy of the identity provider's user record."""

    id: str
    email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_user_record(cls, record: Dict[str, Any]) -> "Identity":
        return cls(id=str(record["id"]), email=record.get("email"), raw=dict(record))

    @property
    def display_name(self) -> str:
        return self.email or self.id
