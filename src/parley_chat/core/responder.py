"""
Responder adapters: turn one user utterance into one reply string.
"""

from abc import ABC, abstractmethod
from typing import Optional

import openai
from openai import AsyncOpenAI

from parley_chat.config import ChatConfig, RESPONDER_ECHO
from parley_chat.core.errors import ResponderError
from parley_chat.utils.logger import get_logger
from parley_chat.utils.usage_tracker import record_usage

logger = get_logger()


class Responder(ABC):
    """A single request/response text generator."""

    @abstractmethod
    async def get_response(self, text: str) -> str:
        """Return the reply for *text*; raise :class:`ResponderError` on failure."""

    async def close(self) -> None:
        pass


class EchoResponder(Responder):
    """Offline responder that repeats the user's text."""

    def __init__(self, prefix: str = "Echo: "):
        self.prefix = prefix

    async def get_response(self, text: str) -> str:
        return f"{self.prefix}{text}"


class OpenAIResponder(Responder):
    """Chat completions responder; one call per message, no retry, no streaming."""

    def __init__(self, model: str, system_prompt: str,
                 client: Optional[AsyncOpenAI] = None,
                 api_key: Optional[str] = None, timeout: float = 60.0):
        self.model = model
        self.system_prompt = system_prompt
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Built on first use so commands that never reply work without an API key
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def get_response(self, text: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": text},
                ],
            )
        except openai.OpenAIError as e:
            logger.error(f"Responder request failed: {e}")
            raise ResponderError(f"Responder request failed: {e}") from e

        if not response.choices:
            raise ResponderError("Responder returned no choices")

        usage = getattr(response, "usage", None)
        if usage:
            record_usage(
                self.model,
                int(getattr(usage, "prompt_tokens", 0) or 0),
                int(getattr(usage, "completion_tokens", 0) or 0),
            )

        reply = response.choices[0].message.content
        if not reply:
            raise ResponderError("Responder returned an empty reply")
        return reply

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def create_responder(config: ChatConfig) -> Responder:
    """Build the responder selected by ``config.responder``."""
    if config.responder == RESPONDER_ECHO:
        return EchoResponder()
    return OpenAIResponder(
        model=config.openai_model,
        system_prompt=config.system_prompt,
        api_key=config.openai_api_key,
        timeout=config.openai_timeout,
    )
