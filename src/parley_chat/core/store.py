"""
Conversation store adapter: conversations, message history and inserts.

Writes go through :meth:`ConversationStore.save_message`, which validates the
message, checks the referenced conversation exists and, once committed,
publishes a ``db.messages.insert`` event on the change feed.  Reads never
raise: a failing store yields ``None`` or an empty list.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from parley_chat.db import Database
from parley_chat.db_models import Conversation, Message
from parley_chat.core.errors import ValidationError, NotFoundError, StoreError
from parley_chat.core.event import create_insert_event
from parley_chat.core.event_bus import EventBus, EventBusError
from parley_chat.core.models import ChatMessage, ROLES
from parley_chat.utils.logger import get_logger

logger = get_logger()

REQUIRED_FIELDS = ("conversation_id", "user_id", "role", "message")


def validate_message(message: ChatMessage) -> None:
    """Raise :class:`ValidationError` unless every required field is non-empty."""
    missing = [name for name in REQUIRED_FIELDS if not str(getattr(message, name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required message fields: {', '.join(missing)}", missing)
    if message.role not in ROLES:
        raise ValidationError(f"Unknown role: {message.role!r}", ["role"])


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops the offset on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_chat_message(row: Message) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        conversation_id=row.conversation_id,
        user_id=row.user_id,
        role=row.role,
        message=row.message,
        created_at=_as_utc(row.created_at),
        nonce=row.client_nonce,
    )


class ConversationStore:
    """Create conversations, append messages and load history."""

    def __init__(self, database: Database, event_bus: Optional[EventBus] = None):
        self.database = database
        self.event_bus = event_bus

    async def _broadcast(self, table: str, record: Dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish(create_insert_event(table, record))
        except EventBusError as e:
            # Persisted but not broadcast; the next history load still sees it.
            logger.warning(f"Could not broadcast {table} insert: {e}")

    async def create_conversation(self, user_id: str) -> Optional[str]:
        """
        Create a conversation owned by *user_id* and return its id, or ``None``
        if the store rejected it.
        """
        try:
            async with self.database.session() as session:
                conversation = Conversation(user_id=user_id)
                session.add(conversation)
                await session.commit()
                conversation_id = conversation.id
        except SQLAlchemyError as e:
            logger.error(f"Error creating conversation for user {user_id}: {e}")
            return None

        logger.info(f"Created conversation {conversation_id} for user {user_id}")
        await self._broadcast("conversations", {"id": conversation_id, "user_id": user_id})
        return conversation_id

    async def conversation_exists(self, conversation_id: str) -> bool:
        try:
            async with self.database.session() as session:
                return await session.get(Conversation, conversation_id) is not None
        except SQLAlchemyError as e:
            logger.error(f"Error looking up conversation {conversation_id}: {e}")
            return False

    async def load_messages(self, conversation_id: str) -> List[ChatMessage]:
        """
        Return the conversation's messages in ascending creation order, or an
        empty list if the store fails.
        """
        try:
            async with self.database.session() as session:
                stmt = (
                    select(Message)
                    .where(Message.conversation_id == conversation_id)
                    .order_by(Message.created_at, Message.id)
                )
                result = await session.execute(stmt)
                return [_to_chat_message(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error loading messages for conversation {conversation_id}: {e}")
            return []

    async def save_message(self, message: ChatMessage) -> ChatMessage:
        """
        Persist *message* and return it with its store-assigned ``id`` and
        ``created_at``.

        Raises:
            ValidationError: a required field is empty or the role is unknown
            NotFoundError: the referenced conversation does not exist
            StoreError: the insert failed
        """
        validate_message(message)

        try:
            async with self.database.session() as session:
                if await session.get(Conversation, message.conversation_id) is None:
                    raise NotFoundError(message.conversation_id)
                row = Message(
                    conversation_id=message.conversation_id,
                    user_id=message.user_id,
                    role=message.role,
                    message=message.message,
                    client_nonce=message.nonce,
                )
                session.add(row)
                await session.commit()
                saved = message.with_store_fields(row.id, _as_utc(row.created_at))
        except NotFoundError:
            logger.warning(f"Rejected message for missing conversation {message.conversation_id}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error saving message to conversation {message.conversation_id}: {e}")
            raise StoreError(f"Failed to save message: {e}") from e

        logger.debug(f"Saved {saved.role} message {saved.id} in conversation {saved.conversation_id}")
        await self._broadcast("messages", saved.to_dict())
        return saved

    async def list_conversations(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Summaries of stored conversations, oldest first; empty on store error."""
        try:
            async with self.database.session() as session:
                stmt = (
                    select(Conversation, func.count(Message.id))
                    .outerjoin(Message, Message.conversation_id == Conversation.id)
                    .group_by(Conversation.id)
                    .order_by(Conversation.created_at)
                )
                if user_id is not None:
                    stmt = stmt.where(Conversation.user_id == user_id)
                result = await session.execute(stmt)
                return [
                    {
                        "id": conversation.id,
                        "user_id": conversation.user_id,
                        "created_at": _as_utc(conversation.created_at),
                        "message_count": count,
                    }
                    for conversation, count in result.all()
                ]
        except SQLAlchemyError as e:
            logger.error(f"Error listing conversations: {e}")
            return []
