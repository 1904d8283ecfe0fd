"""
Process-wide wiring with an explicit lifecycle.

``ChatContext`` builds every long-lived collaborator from a
:class:`~parley_chat.config.ChatConfig` and hands them to sessions; nothing is
a module-level singleton.

    async with ChatContext(ChatConfig.from_env()) as context:
        session = context.new_session()
        await session.start()
"""

from typing import Optional

from parley_chat.config import ChatConfig
from parley_chat.db import Database
from parley_chat.core.event_bus import EventBus
from parley_chat.core.identity import IdentityProvider, create_identity_provider
from parley_chat.core.local_storage import LocalStorage
from parley_chat.core.responder import Responder, create_responder
from parley_chat.core.session import ChatSession
from parley_chat.core.store import ConversationStore
from parley_chat.utils.logger import get_logger

logger = get_logger()


class ChatContext:
    """Owns the database, change feed, local storage and the three adapters."""

    def __init__(self, config: ChatConfig,
                 responder: Optional[Responder] = None,
                 identity_provider: Optional[IdentityProvider] = None,
                 storage: Optional[LocalStorage] = None):
        self.config = config
        self.event_bus = EventBus()
        self.database = Database(config.database_url)
        self.storage = storage or LocalStorage(config.storage_path)
        self.store = ConversationStore(self.database, self.event_bus)
        self.identity_provider = identity_provider or create_identity_provider(
            config, self.storage, self.event_bus
        )
        self.responder = responder or create_responder(config)
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self.event_bus.start()
        await self.database.ensure_schema()
        self._started = True
        logger.info("Chat context started")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.responder.close()
        await self.event_bus.stop()
        await self.database.dispose()
        self._started = False
        logger.info("Chat context stopped")

    def new_session(self, live_sync: bool = True) -> ChatSession:
        return ChatSession(
            config=self.config,
            store=self.store,
            identity_provider=self.identity_provider,
            responder=self.responder,
            storage=self.storage,
            event_bus=self.event_bus,
            live_sync=live_sync,
        )

    async def __aenter__(self) -> "ChatContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
