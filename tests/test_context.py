#!/usr/bin/env python3
"""
Pytest tests for ChatContext wiring and lifecycle.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from parley_chat.core.context import ChatContext
from parley_chat.core.identity import GuestIdentityProvider
from parley_chat.core.responder import EchoResponder
from parley_chat.core.session import ChatSession


class TestChatContext:
    """Test cases for ChatContext."""

    def test_builds_collaborators_from_config(self, config):
        context = ChatContext(config)

        assert context.database.url.startswith("sqlite+aiosqlite:///")
        assert context.store.database is context.database
        assert context.store.event_bus is context.event_bus
        assert isinstance(context.identity_provider, GuestIdentityProvider)
        assert isinstance(context.responder, EchoResponder)

    @pytest.mark.asyncio
    async def test_lifecycle(self, config):
        responder = MagicMock()
        responder.close = AsyncMock()

        async with ChatContext(config, responder=responder) as context:
            assert context.event_bus.is_running
            assert await context.store.create_conversation("guest") is not None

        assert not context.event_bus.is_running
        responder.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, config):
        context = ChatContext(config)
        await context.start()
        await context.start()
        await context.stop()
        await context.stop()
        assert not context.event_bus.is_running

    @pytest.mark.asyncio
    async def test_sessions_share_state(self, config):
        async with ChatContext(config) as context:
            first = context.new_session()
            second = context.new_session()
            assert isinstance(first, ChatSession)

            await first.start()
            await second.start()
            assert first.conversation_id == second.conversation_id

            await first.send_message("hello from one")
            await asyncio.sleep(0.1)

            # The second view picks the messages up from the change feed
            assert [m.message for m in second.messages] == ["hello from one", "Echo: hello from one"]

            await first.close()
            await second.close()
