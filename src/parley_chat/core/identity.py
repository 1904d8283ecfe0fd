"""
Identity provider adapters.

None of these operations raise: sign-in and sign-out failures are logged, and
any failure to resolve the current user is treated as "no identity" (guest).
"""

import asyncio
import webbrowser
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import aiohttp

from parley_chat.config import ChatConfig
from parley_chat.core.errors import AuthError
from parley_chat.core.event import create_auth_event
from parley_chat.core.event_bus import EventBus, EventBusError
from parley_chat.core.local_storage import LocalStorage
from parley_chat.core.models import Identity
from parley_chat.utils.logger import get_logger

logger = get_logger()


class IdentityProvider(ABC):
    """Sign-in, sign-out and current-user lookup against an auth service."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus

    async def _announce(self, user_id: Optional[str], signed_in: bool) -> None:
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish(create_auth_event(user_id, signed_in))
        except EventBusError as e:
            logger.warning(f"Could not announce auth state change: {e}")

    @abstractmethod
    async def sign_in(self) -> Optional[str]:
        """Start the redirect-based sign-in; return the URL the user must visit, if any."""

    @abstractmethod
    async def complete_sign_in(self, access_token: str) -> Optional[Identity]:
        """Finish sign-in with the token delivered to the redirect target."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Invalidate the current session."""

    @abstractmethod
    async def get_current_user(self) -> Optional[Identity]:
        """Return the signed-in identity, or ``None`` for a guest."""


class GuestIdentityProvider(IdentityProvider):
    """Anonymous variant: there is never an identity."""

    async def sign_in(self) -> Optional[str]:
        logger.warning("Sign-in requested but no identity provider is configured")
        return None

    async def complete_sign_in(self, access_token: str) -> Optional[Identity]:
        logger.warning("Sign-in completion ignored: no identity provider is configured")
        return None

    async def sign_out(self) -> None:
        logger.debug("Sign-out requested for guest session; nothing to do")

    async def get_current_user(self) -> Optional[Identity]:
        return None


class GoTrueIdentityProvider(IdentityProvider):
    """
    OAuth identity through a GoTrue-compatible REST API.

    The access token obtained from the OAuth redirect is kept in local
    storage under ``token_key``.
    """

    def __init__(self, auth_url: str, api_key: Optional[str], storage: LocalStorage,
                 event_bus: Optional[EventBus] = None, provider: str = "google",
                 redirect_url: str = "http://localhost:3000",
                 token_key: str = "accessToken", timeout: float = 10.0,
                 open_browser: bool = True):
        super().__init__(event_bus)
        self.auth_url = auth_url.rstrip("/")
        self.api_key = api_key
        self.storage = storage
        self.provider = provider
        self.redirect_url = redirect_url
        self.token_key = token_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.open_browser = open_browser

    def authorize_url(self) -> str:
        query = urlencode({"provider": self.provider, "redirect_to": self.redirect_url})
        return f"{self.auth_url}/authorize?{query}"

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(self, method: str, path: str, token: Optional[str] = None) -> Dict[str, Any]:
        """Call the auth API; any transport or HTTP failure becomes :class:`AuthError`."""
        url = f"{self.auth_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, headers=self._headers(token)) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise AuthError(f"{method} {path} failed with {response.status}: {body[:200]}")
                    if response.status == 204 or response.content_type != "application/json":
                        return {}
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(f"{method} {path} failed: {e}") from e

    async def sign_in(self) -> Optional[str]:
        url = self.authorize_url()
        if self.open_browser:
            try:
                if not webbrowser.open(url):
                    logger.warning(f"Could not open a browser; visit {url} to sign in")
            except webbrowser.Error as e:
                logger.error(f"OAuth sign-in error: {e}")
        logger.info(f"Started {self.provider} sign-in")
        return url

    async def complete_sign_in(self, access_token: str) -> Optional[Identity]:
        self.storage.set_item(self.token_key, access_token)
        identity = await self.get_current_user()
        if identity is None:
            logger.error("Sign-in token was rejected by the identity provider")
            self.storage.remove_item(self.token_key)
            return None
        logger.info(f"Signed in as {identity.display_name}")
        await self._announce(identity.id, True)
        return identity

    async def sign_out(self) -> None:
        token = self.storage.get_item(self.token_key)
        if token:
            try:
                await self._request("POST", "/logout", token)
            except AuthError as e:
                logger.error(f"Sign out error: {e}")
        self.storage.remove_item(self.token_key)
        await self._announce(None, False)

    async def get_current_user(self) -> Optional[Identity]:
        token = self.storage.get_item(self.token_key)
        if not token:
            return None
        try:
            record = await self._request("GET", "/user", token)
            return Identity.from_user_record(record)
        except (AuthError, KeyError, TypeError) as e:
            logger.debug(f"No current user: {e}")
            return None


def create_identity_provider(config: ChatConfig, storage: LocalStorage,
                             event_bus: Optional[EventBus] = None) -> IdentityProvider:
    """Pick the provider for ``config.auth_mode``."""
    if config.requires_identity:
        if config.auth_url:
            return GoTrueIdentityProvider(
                auth_url=config.auth_url,
                api_key=config.auth_api_key,
                storage=storage,
                event_bus=event_bus,
                provider=config.oauth_provider,
                redirect_url=config.redirect_url,
                token_key=config.token_key,
                timeout=config.http_timeout,
            )
        logger.warning("Authenticated mode without PARLEY_AUTH_URL; nobody can sign in")
    return GuestIdentityProvider(event_bus)
