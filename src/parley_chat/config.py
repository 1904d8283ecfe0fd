"""
Runtime configuration for Parley Chat.

All settings come from environment variables (``.env`` is loaded when the
package is imported).  A :class:`ChatConfig` is built once at process start and
handed to :class:`parley_chat.core.context.ChatContext`; nothing else reads the
environment directly.
"""

import os
from dataclasses import dataclass
from typing import Optional

AUTH_MODE_ANONYMOUS = "anonymous"
AUTH_MODE_AUTHENTICATED = "authenticated"

RESPONDER_OPENAI = "openai"
RESPONDER_ECHO = "echo"

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///parley.db"
DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly, concise assistant chatting with a user in a terminal. "
    "Answer in plain text or light markdown."
)


def normalize_database_url(raw_url: str) -> str:
    """Ensure SQLite URLs use the async ``aiosqlite`` driver."""
    if raw_url.startswith("sqlite:///") and not raw_url.startswith("sqlite+aiosqlite:///"):
        return raw_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return raw_url


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass
class ChatConfig:
    """Settings shared by the adapters, the session and the UI."""

    database_url: str = DEFAULT_DATABASE_URL
    storage_path: str = ".parley_storage.json"
    auth_mode: str = AUTH_MODE_ANONYMOUS
    guest_user_id: str = "guest"
    conversation_key: str = "conversationId"
    token_key: str = "accessToken"

    # Identity provider (GoTrue-compatible REST API)
    auth_url: Optional[str] = None
    auth_api_key: Optional[str] = None
    oauth_provider: str = "google"
    redirect_url: str = "http://localhost:3000"
    http_timeout: float = 10.0

    # Responder
    responder: str = RESPONDER_OPENAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout: float = 60.0
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    def __post_init__(self):
        self.database_url = normalize_database_url(self.database_url)
        if self.auth_mode not in (AUTH_MODE_ANONYMOUS, AUTH_MODE_AUTHENTICATED):
            raise ValueError(f"Unknown auth mode: {self.auth_mode!r}")
        if self.responder not in (RESPONDER_OPENAI, RESPONDER_ECHO):
            raise ValueError(f"Unknown responder: {self.responder!r}")

    @property
    def requires_identity(self) -> bool:
        """Whether sending is only allowed for a signed-in user."""
        return self.auth_mode == AUTH_MODE_AUTHENTICATED

    @classmethod
    def from_env(cls, **overrides) -> "ChatConfig":
        """Build a config from the environment; keyword arguments win."""
        values = dict(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            storage_path=os.getenv("PARLEY_STORAGE_FILE", ".parley_storage.json"),
            auth_mode=os.getenv("PARLEY_AUTH_MODE", AUTH_MODE_ANONYMOUS).lower(),
            guest_user_id=os.getenv("PARLEY_GUEST_USER_ID", "guest"),
            auth_url=os.getenv("PARLEY_AUTH_URL") or None,
            auth_api_key=os.getenv("PARLEY_AUTH_KEY") or None,
            oauth_provider=os.getenv("PARLEY_OAUTH_PROVIDER", "google"),
            redirect_url=os.getenv("PARLEY_REDIRECT_URL", "http://localhost:3000"),
            http_timeout=_env_float("PARLEY_HTTP_TIMEOUT", 10.0),
            responder=os.getenv("PARLEY_RESPONDER", RESPONDER_OPENAI).lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_timeout=_env_float("OPENAI_TIMEOUT", 60.0),
            system_prompt=os.getenv("PARLEY_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        )
        values.update(overrides)
        return cls(**values)
