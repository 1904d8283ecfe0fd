"""
Live message synchronisation.

The change feed delivers every ``db.messages.insert`` event to every
subscriber; :class:`LiveSyncChannel` narrows that to one conversation and
exposes it as an async iterator.  :class:`MessageSync` owns the channel for a
session and retargets it when the active conversation changes.
:class:`MessageList` is the displayed, append-only message state with dedup,
so an optimistically appended message and its echoed insert event show up
once.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, List, Optional

from parley_chat.core.event import Event, StandardEventTypes
from parley_chat.core.event_bus import EventBus
from parley_chat.core.models import ChatMessage
from parley_chat.utils.logger import get_logger

logger = get_logger()

_STOP = object()

MessagePredicate = Callable[[ChatMessage], bool]
MessageCallback = Callable[[ChatMessage], Any]
ListListener = Callable[[str, Optional[ChatMessage]], Any]


class SyncState(Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"


class LiveSyncChannel:
    """
    Cancellable subscription to inserted messages of one conversation.

    ``start()`` subscribes and ``stop()`` releases the subscription and ends any
    ``async for`` over the channel.  A stopped channel can be started again; it
    then begins with an empty queue.
    """

    def __init__(self, event_bus: EventBus, conversation_id: str,
                 predicate: Optional[MessagePredicate] = None):
        self.event_bus = event_bus
        self.conversation_id = conversation_id
        self.predicate = predicate
        self._subscription_id: Optional[int] = None
        self._queue: Optional[asyncio.Queue] = None

    @property
    def state(self) -> SyncState:
        return SyncState.SUBSCRIBED if self._subscription_id is not None else SyncState.UNSUBSCRIBED

    def matches(self, message: ChatMessage) -> bool:
        if message.conversation_id != self.conversation_id:
            return False
        return self.predicate is None or bool(self.predicate(message))

    def start(self) -> "LiveSyncChannel":
        if self._subscription_id is not None:
            return self
        self._queue = asyncio.Queue()
        self._subscription_id = self.event_bus.subscribe(
            StandardEventTypes.DB_MESSAGE_INSERTED, self._on_event
        )
        logger.debug(f"Live sync subscribed to conversation {self.conversation_id}")
        return self

    def stop(self) -> None:
        if self._subscription_id is None:
            return
        self.event_bus.unsubscribe(self._subscription_id)
        self._subscription_id = None
        if self._queue is not None:
            self._queue.put_nowait(_STOP)
        logger.debug(f"Live sync released conversation {self.conversation_id}")

    def _on_event(self, event: Event) -> None:
        try:
            message = ChatMessage.from_dict(event.data["new"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed insert event {event.event_id}: {e}")
            return
        if self._subscription_id is None or not self.matches(message):
            return
        self._queue.put_nowait(message)

    def __aiter__(self):
        if self._queue is None:
            raise RuntimeError("LiveSyncChannel must be started before iterating")
        return self._iterate(self._queue)

    async def _iterate(self, queue: asyncio.Queue):
        while True:
            item = await queue.get()
            if item is _STOP:
                return
            yield item

    async def __aenter__(self) -> "LiveSyncChannel":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()


class MessageSync:
    """Keeps exactly one channel open, for the active conversation, and pumps it into a callback."""

    def __init__(self, event_bus: EventBus, on_message: MessageCallback):
        self.event_bus = event_bus
        self.on_message = on_message
        self._channel: Optional[LiveSyncChannel] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def conversation_id(self) -> Optional[str]:
        return self._channel.conversation_id if self._channel else None

    @property
    def state(self) -> SyncState:
        return self._channel.state if self._channel else SyncState.UNSUBSCRIBED

    def retarget(self, conversation_id: Optional[str]) -> None:
        """Follow *conversation_id*; ``None`` releases the channel."""
        if (conversation_id is not None and conversation_id == self.conversation_id
                and self.state is SyncState.SUBSCRIBED):
            return
        self.close()
        if conversation_id is None:
            return
        self._channel = LiveSyncChannel(self.event_bus, conversation_id).start()
        self._task = asyncio.create_task(self._pump(self._channel))

    async def _pump(self, channel: LiveSyncChannel) -> None:
        async for message in channel:
            if channel is not self._channel:
                break
            try:
                result = self.on_message(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error applying synced message {message.id}")

    def close(self) -> None:
        if self._channel is not None:
            self._channel.stop()
            self._channel = None
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        task = self._task
        self.close()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass


class MessageList:
    """
    Displayed message state: append-only, deduplicated by ``ChatMessage.dedup_key``.

    Listeners are called with ``("append", message)`` or ``("reset", None)``.
    """

    def __init__(self, messages: Iterable[ChatMessage] = ()):
        self._items: List[ChatMessage] = []
        self._keys: set = set()
        self._listeners: List[ListListener] = []
        for message in messages:
            self._add(message)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def snapshot(self) -> List[ChatMessage]:
        return list(self._items)

    def contains(self, message: ChatMessage) -> bool:
        key = message.dedup_key
        return key is not None and key in self._keys

    def add_listener(self, listener: ListListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ListListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: str, message: Optional[ChatMessage]) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, message)
            except Exception:
                logger.exception("Error in message list listener")

    def _add(self, message: ChatMessage) -> bool:
        if self.contains(message):
            return False
        self._items.append(message)
        if message.dedup_key is not None:
            self._keys.add(message.dedup_key)
        return True

    def append(self, message: ChatMessage) -> bool:
        """Append *message* unless an equivalent one is already present."""
        added = self._add(message)
        if added:
            self._notify("append", message)
        return added

    def replace(self, messages: Iterable[ChatMessage]) -> None:
        self._items = []
        self._keys = set()
        for message in messages:
            self._add(message)
        self._notify("reset", None)

    def clear(self) -> None:
        self.replace(())
