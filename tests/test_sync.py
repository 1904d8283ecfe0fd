#!/usr/bin/env python3
"""
Pytest tests for live message synchronisation and the displayed message list.
"""

import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from parley_chat.core.event import Event, StandardEventTypes, create_insert_event
from parley_chat.core.models import ChatMessage, Role
from parley_chat.core.sync import LiveSyncChannel, MessageList, MessageSync, SyncState


def make_message(conversation_id="c1", text="hello", id=None, nonce=None, role=Role.USER.value):
    return ChatMessage(conversation_id=conversation_id, user_id="guest", role=role,
                       message=text, id=id, nonce=nonce,
                       created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


async def publish_insert(event_bus, message):
    await event_bus.publish(create_insert_event("messages", message.to_dict()))


class TestMessageList:
    """Test the deduplicating message list."""

    def test_append_and_iterate(self):
        messages = MessageList()
        assert messages.append(make_message(text="a", id=1))
        assert messages.append(make_message(text="b", id=2))

        assert [m.message for m in messages] == ["a", "b"]
        assert len(messages) == 2
        assert messages[1].message == "b"

    def test_duplicate_by_nonce_ignored(self):
        messages = MessageList()
        optimistic = make_message(text="hi", id=7, nonce="n1")
        echoed = make_message(text="hi", id=7, nonce="n1")

        assert messages.append(optimistic) is True
        assert messages.append(echoed) is False
        assert len(messages) == 1

    def test_duplicate_by_id_ignored(self):
        messages = MessageList()
        messages.append(make_message(id=3))
        assert messages.append(make_message(id=3)) is False
        assert len(messages) == 1

    def test_same_text_different_messages_kept(self):
        messages = MessageList()
        messages.append(make_message(text="ok", nonce="n1"))
        messages.append(make_message(text="ok", nonce="n2"))
        assert len(messages) == 2

    def test_listeners(self):
        messages = MessageList()
        listener = Mock()
        messages.add_listener(listener)

        first = make_message(id=1)
        messages.append(first)
        messages.append(make_message(id=1))
        messages.replace([make_message(id=2)])

        assert listener.call_args_list[0][0] == ("append", first)
        assert listener.call_args_list[1][0] == ("reset", None)
        assert listener.call_count == 2

        messages.remove_listener(listener)
        messages.clear()
        assert listener.call_count == 2
        assert len(messages) == 0

    def test_listener_error_does_not_break_append(self):
        messages = MessageList()
        messages.add_listener(Mock(side_effect=RuntimeError("ui gone")))
        assert messages.append(make_message(id=1)) is True
        assert len(messages) == 1

    def test_replace_resets_dedup_keys(self):
        messages = MessageList([make_message(id=1)])
        messages.replace([])
        assert messages.append(make_message(id=1)) is True

    def test_snapshot_is_a_copy(self):
        messages = MessageList([make_message(id=1)])
        snapshot = messages.snapshot()
        snapshot.append(make_message(id=2))
        assert len(messages) == 1


class TestLiveSyncChannel:
    """Test the per-conversation subscription."""

    @pytest.mark.asyncio
    async def test_iterate_before_start_raises(self, event_bus):
        channel = LiveSyncChannel(event_bus, "c1")
        with pytest.raises(RuntimeError):
            channel.__aiter__()

    @pytest.mark.asyncio
    async def test_delivers_only_its_conversation(self, event_bus):
        received = []
        async with LiveSyncChannel(event_bus, "c1") as channel:
            assert channel.state is SyncState.SUBSCRIBED

            async def consume():
                async for message in channel:
                    received.append(message)

            task = asyncio.create_task(consume())
            await publish_insert(event_bus, make_message("c2", "elsewhere", id=1))
            await publish_insert(event_bus, make_message("c1", "here", id=2))
            await asyncio.sleep(0.1)

        await asyncio.wait_for(task, timeout=1.0)
        assert channel.state is SyncState.UNSUBSCRIBED
        assert [m.message for m in received] == ["here"]

    @pytest.mark.asyncio
    async def test_predicate_filters(self, event_bus):
        channel = LiveSyncChannel(event_bus, "c1", predicate=lambda m: m.role == Role.AI.value)
        assert channel.matches(make_message("c1", role=Role.AI.value))
        assert not channel.matches(make_message("c1", role=Role.USER.value))
        assert not channel.matches(make_message("c2", role=Role.AI.value))

    @pytest.mark.asyncio
    async def test_malformed_event_ignored(self, event_bus):
        channel = LiveSyncChannel(event_bus, "c1").start()
        await event_bus.publish(Event(event_type=StandardEventTypes.DB_MESSAGE_INSERTED,
                                      data={"new": {"id": 1}}))
        await publish_insert(event_bus, make_message("c1", "valid", id=2))
        await asyncio.sleep(0.1)
        channel.stop()

        received = [m async for m in channel]
        assert [m.message for m in received] == ["valid"]

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, event_bus):
        channel = LiveSyncChannel(event_bus, "c1").start()
        channel.stop()
        assert len(event_bus.get_subscriptions()) == 0

        # Events published while stopped are not delivered
        await publish_insert(event_bus, make_message("c1", "missed", id=1))
        await asyncio.sleep(0.1)

        channel.start()
        await publish_insert(event_bus, make_message("c1", "caught", id=2))
        await asyncio.sleep(0.1)
        channel.stop()

        received = [m async for m in channel]
        assert [m.message for m in received] == ["caught"]


class TestMessageSync:
    """Test the session-owned sync that follows the active conversation."""

    @pytest.mark.asyncio
    async def test_retarget_and_receive(self, event_bus):
        received = []
        sync = MessageSync(event_bus, received.append)

        sync.retarget("c1")
        assert sync.state is SyncState.SUBSCRIBED
        assert sync.conversation_id == "c1"

        await publish_insert(event_bus, make_message("c1", "one", id=1))
        await asyncio.sleep(0.1)

        sync.retarget("c2")
        await publish_insert(event_bus, make_message("c1", "stale", id=2))
        await publish_insert(event_bus, make_message("c2", "two", id=3))
        await asyncio.sleep(0.1)

        assert [m.message for m in received] == ["one", "two"]
        assert len(event_bus.get_subscriptions()) == 1
        await sync.aclose()

    @pytest.mark.asyncio
    async def test_retarget_same_conversation_keeps_channel(self, event_bus):
        sync = MessageSync(event_bus, Mock())
        sync.retarget("c1")
        first = event_bus.get_subscriptions()[0]["id"]

        sync.retarget("c1")
        assert event_bus.get_subscriptions()[0]["id"] == first
        await sync.aclose()

    @pytest.mark.asyncio
    async def test_retarget_none_releases(self, event_bus):
        sync = MessageSync(event_bus, Mock())
        sync.retarget("c1")
        sync.retarget(None)
        await asyncio.sleep(0)

        assert sync.state is SyncState.UNSUBSCRIBED
        assert sync.conversation_id is None
        assert event_bus.get_subscriptions() == []

    @pytest.mark.asyncio
    async def test_async_callback_and_errors(self, event_bus):
        received = []

        async def on_message(message):
            if message.message == "bad":
                raise ValueError("cannot apply")
            received.append(message)

        sync = MessageSync(event_bus, on_message)
        sync.retarget("c1")
        await publish_insert(event_bus, make_message("c1", "bad", id=1))
        await publish_insert(event_bus, make_message("c1", "good", id=2))
        await asyncio.sleep(0.1)

        assert [m.message for m in received] == ["good"]
        await sync.aclose()
        assert event_bus.get_subscriptions() == []

    @pytest.mark.asyncio
    async def test_optimistic_append_then_echo_shows_once(self, event_bus):
        messages = MessageList()
        sync = MessageSync(event_bus, messages.append)
        sync.retarget("c1")

        local = make_message("c1", "hi", id=10, nonce="abc")
        messages.append(local)
        await publish_insert(event_bus, local)
        await asyncio.sleep(0.1)

        assert len(messages) == 1
        await sync.aclose()

    @pytest.mark.asyncio
    async def test_echo_before_optimistic_append_shows_once(self, event_bus):
        messages = MessageList()
        sync = MessageSync(event_bus, messages.append)
        sync.retarget("c1")

        local = make_message("c1", "hi", id=11, nonce="def")
        await publish_insert(event_bus, local)
        await asyncio.sleep(0.1)
        messages.append(local)

        assert len(messages) == 1
        await sync.aclose()
