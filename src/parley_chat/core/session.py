"""
Chat session state: bootstrap, sending and identity changes.

A :class:`ChatSession` holds what one UI view shows: the active conversation
id, the resolved identity, the displayed :class:`MessageList` and a one-line
status.  It is built by :meth:`parley_chat.core.context.ChatContext.new_session`.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from parley_chat.config import ChatConfig
from parley_chat.core.errors import ChatError, ResponderError
from parley_chat.core.event import Event, StandardEventTypes
from parley_chat.core.event_bus import EventBus
from parley_chat.core.identity import IdentityProvider
from parley_chat.core.local_storage import LocalStorage
from parley_chat.core.models import ChatMessage, Identity, Role, new_nonce
from parley_chat.core.responder import Responder
from parley_chat.core.store import ConversationStore
from parley_chat.core.sync import MessageList, MessageSync, SyncState
from parley_chat.utils.logger import get_logger

logger = get_logger()

StatusListener = Callable[[str, int], None]


@dataclass
class BootstrapResult:
    conversation_id: Optional[str]
    messages: List[ChatMessage] = field(default_factory=list)
    created: bool = False


@dataclass
class SendResult:
    user_message: Optional[ChatMessage] = None
    reply: Optional[ChatMessage] = None
    error: Optional[ChatError] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.reply is not None and self.error is None


class ChatSession:
    """State and flows behind one conversation view."""

    def __init__(self, config: ChatConfig, store: ConversationStore,
                 identity_provider: IdentityProvider, responder: Responder,
                 storage: LocalStorage, event_bus: Optional[EventBus] = None,
                 live_sync: bool = True):
        self.config = config
        self.store = store
        self.identity_provider = identity_provider
        self.responder = responder
        self.storage = storage
        self.event_bus = event_bus

        self.messages = MessageList()
        self.conversation_id: Optional[str] = None
        self.identity: Optional[Identity] = None
        self.status: str = ""

        self._bootstrap_lock = asyncio.Lock()
        self._status_listeners: List[StatusListener] = []
        self._auth_subscription: Optional[int] = None
        self._sync: Optional[MessageSync] = None
        if event_bus is not None and live_sync:
            self._sync = MessageSync(event_bus, self.receive)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self.identity.id if self.identity else self.config.guest_user_id

    @property
    def can_send(self) -> bool:
        if self.conversation_id is None:
            return False
        return self.identity is not None or not self.config.requires_identity

    @property
    def sync_state(self) -> SyncState:
        return self._sync.state if self._sync else SyncState.UNSUBSCRIBED

    # ------------------------------------------------------------------
    # Status reporting
    # ------------------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _report(self, status: str, level: int = logging.INFO) -> None:
        self.status = status
        if status:
            logger.log(level, status)
        for listener in list(self._status_listeners):
            try:
                listener(status, level)
            except Exception:
                logger.exception("Error in status listener")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> BootstrapResult:
        """Follow identity changes and run the first bootstrap."""
        if self.event_bus is not None and self._auth_subscription is None:
            self._auth_subscription = self.event_bus.subscribe(
                StandardEventTypes.AUTH_STATE_CHANGED, self._on_auth_changed
            )
        return await self.bootstrap()

    async def close(self) -> None:
        """Release the live sync channel and the identity subscription."""
        if self._auth_subscription is not None and self.event_bus is not None:
            self.event_bus.unsubscribe(self._auth_subscription)
            self._auth_subscription = None
        if self._sync is not None:
            await self._sync.aclose()

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def bootstrap(self) -> BootstrapResult:
        """
        Resolve identity and conversation, then load history.

        The conversation id comes from local storage; only when none is cached
        is a conversation created, and its id is stored before it is used.
        Never raises: a failed creation leaves the session without a
        conversation (sending disabled) and reports it.
        """
        async with self._bootstrap_lock:
            self.identity = await self.identity_provider.get_current_user()

            key = self.config.conversation_key
            conversation_id = self.storage.get_item(key)
            created = False
            if not conversation_id:
                conversation_id = await self.store.create_conversation(self.user_id)
                if conversation_id is None:
                    self.conversation_id = None
                    if self._sync is not None:
                        self._sync.retarget(None)
                    self._report("Could not start a conversation; sending is disabled.", logging.ERROR)
                    return BootstrapResult(None, [], False)
                self.storage.set_item(key, conversation_id)
                created = True

            self.conversation_id = conversation_id
            if self._sync is not None:
                self._sync.retarget(conversation_id)

            history = await self.store.load_messages(conversation_id)
            # Read after the load so inserts synced during it survive the replace
            pending = [m for m in self.messages if m.conversation_id == conversation_id]
            self.messages.replace(history)
            for message in pending:
                self.messages.append(message)

            logger.info(
                f"Bootstrapped conversation {conversation_id} "
                f"({'new' if created else 'cached'}, {len(self.messages)} messages)"
            )
            self._report("")
            return BootstrapResult(conversation_id, self.messages.snapshot(), created)

    async def switch_conversation(self, conversation_id: str) -> BootstrapResult:
        """Make *conversation_id* the cached, active conversation."""
        self.storage.set_item(self.config.conversation_key, conversation_id)
        self.messages.clear()
        return await self.bootstrap()

    async def reset_conversation(self) -> BootstrapResult:
        """Forget the cached conversation id and start a fresh conversation."""
        self.storage.remove_item(self.config.conversation_key)
        self.messages.clear()
        return await self.bootstrap()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def _on_auth_changed(self, event: Event) -> None:
        await self.handle_identity_change()

    async def handle_identity_change(self) -> None:
        """Re-bootstrap for a signed-in user; on sign-out drop the displayed messages."""
        identity = await self.identity_provider.get_current_user()
        if identity is None:
            self.identity = None
            if self._sync is not None:
                self._sync.retarget(None)
            self.messages.clear()
            self._report("Signed out.")
            return
        await self.bootstrap()
        self._report(f"Signed in as {identity.display_name}.")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def receive(self, message: ChatMessage) -> bool:
        """Apply a message from the change feed; duplicates and other conversations are dropped."""
        if message.conversation_id != self.conversation_id:
            return False
        return self.messages.append(message)

    async def send_message(self, text: str,
                           on_persisted: Optional[Callable[[ChatMessage], None]] = None) -> SendResult:
        """
        Persist the user's message, ask the responder, persist and show the reply.

        Each message is appended to the displayed list only after it has been
        persisted.  Failures are logged and reported through :attr:`status`;
        they stop the flow but are never raised.  *on_persisted* is called once
        the user's message is stored (the UI clears its input there).
        """
        text = (text or "").strip()
        if not text:
            return SendResult(skipped=True)
        if self.conversation_id is None:
            self._report("No active conversation; cannot send.", logging.WARNING)
            return SendResult(skipped=True)
        if self.config.requires_identity and self.identity is None:
            self._report("Sign in to send messages.", logging.WARNING)
            return SendResult(skipped=True)

        conversation_id = self.conversation_id
        user_message = ChatMessage(
            conversation_id=conversation_id,
            user_id=self.user_id,
            role=Role.USER.value,
            message=text,
            nonce=new_nonce(),
        )
        try:
            saved = await self.store.save_message(user_message)
        except ChatError as e:
            self._report(f"Message not sent: {e}", logging.ERROR)
            return SendResult(error=e)

        self.messages.append(saved)
        if on_persisted is not None:
            on_persisted(saved)

        self._report("Waiting for reply...")
        try:
            reply_text = await self.responder.get_response(text)
        except ResponderError as e:
            self._report(f"No reply: {e}", logging.ERROR)
            return SendResult(user_message=saved, error=e)

        reply = ChatMessage(
            conversation_id=conversation_id,
            user_id=self.user_id,
            role=Role.AI.value,
            message=reply_text,
            nonce=new_nonce(),
        )
        try:
            saved_reply = await self.store.save_message(reply)
        except ChatError as e:
            self._report(f"Reply not saved: {e}", logging.ERROR)
            return SendResult(user_message=saved, error=e)

        self.messages.append(saved_reply)
        self._report("")
        return SendResult(user_message=saved, reply=saved_reply)
