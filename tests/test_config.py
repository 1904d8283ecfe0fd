#!/usr/bin/env python3
"""
Pytest tests for runtime configuration.
"""

import os
import pytest
from unittest.mock import patch

from parley_chat.config import (
    ChatConfig, normalize_database_url, AUTH_MODE_AUTHENTICATED,
    DEFAULT_DATABASE_URL, RESPONDER_ECHO,
)


class TestNormalizeDatabaseUrl:
    """Test SQLite URL rewriting."""

    def test_plain_sqlite_uses_aiosqlite(self):
        assert normalize_database_url("sqlite:///chat.db") == "sqlite+aiosqlite:///chat.db"

    def test_aiosqlite_url_unchanged(self):
        assert normalize_database_url("sqlite+aiosqlite:///chat.db") == "sqlite+aiosqlite:///chat.db"

    def test_other_drivers_unchanged(self):
        url = "postgresql+asyncpg://user:pw@localhost/chat"
        assert normalize_database_url(url) == url


class TestChatConfig:
    """Test ChatConfig construction and validation."""

    def test_defaults(self):
        config = ChatConfig()
        assert config.database_url == DEFAULT_DATABASE_URL
        assert config.conversation_key == "conversationId"
        assert config.guest_user_id == "guest"
        assert config.requires_identity is False

    def test_database_url_normalised(self):
        config = ChatConfig(database_url="sqlite:///other.db")
        assert config.database_url == "sqlite+aiosqlite:///other.db"

    def test_unknown_auth_mode_rejected(self):
        with pytest.raises(ValueError):
            ChatConfig(auth_mode="sometimes")

    def test_unknown_responder_rejected(self):
        with pytest.raises(ValueError):
            ChatConfig(responder="oracle")

    def test_authenticated_requires_identity(self):
        config = ChatConfig(auth_mode=AUTH_MODE_AUTHENTICATED)
        assert config.requires_identity is True

    def test_from_env(self):
        env = {
            "DATABASE_URL": "sqlite:///env.db",
            "PARLEY_AUTH_MODE": "AUTHENTICATED",
            "PARLEY_AUTH_URL": "https://auth.example.com/auth/v1",
            "PARLEY_AUTH_KEY": "anon-key",
            "PARLEY_RESPONDER": "echo",
            "OPENAI_MODEL": "gpt-4o",
            "PARLEY_HTTP_TIMEOUT": "2.5",
        }
        with patch.dict(os.environ, env):
            config = ChatConfig.from_env()

        assert config.database_url == "sqlite+aiosqlite:///env.db"
        assert config.auth_mode == AUTH_MODE_AUTHENTICATED
        assert config.auth_url == "https://auth.example.com/auth/v1"
        assert config.auth_api_key == "anon-key"
        assert config.responder == RESPONDER_ECHO
        assert config.openai_model == "gpt-4o"
        assert config.http_timeout == 2.5

    def test_from_env_bad_float_falls_back(self):
        with patch.dict(os.environ, {"OPENAI_TIMEOUT": "soon"}):
            config = ChatConfig.from_env()
        assert config.openai_timeout == 60.0

    def test_from_env_overrides_win(self):
        with patch.dict(os.environ, {"PARLEY_GUEST_USER_ID": "visitor"}):
            config = ChatConfig.from_env(guest_user_id="anon")
        assert config.guest_user_id == "anon"
