"""Chat adapters for the AI services that run work tasks."""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

import anthropic
from pydantic import BaseModel

from gvflow.errors import ChatAdapterError

logger = logging.getLogger(__name__)

# Default retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds
RETRY_MULTIPLIER = 2.0

DEFAULT_MODEL = "claude-sonnet-4-5"


class AiServiceType(str, Enum):
    """Supported AI service backends."""

    ANTHROPIC = "anthropic"


class ChatMessage(BaseModel):
    """One message of a chat conversation."""

    role: str
    content: str


class ChatResult(BaseModel):
    """Reply of a chat call."""

    content: str
    usage: dict[str, Any] | None = None


class ChatAdapter(ABC):
    """Abstract base class for AI chat backends."""

    service_type: ClassVar[AiServiceType]

    @abstractmethod
    async def chat(
        self, messages: list[ChatMessage], options: dict[str, Any] | None = None
    ) -> ChatResult:
        """Send a conversation and return the assistant reply."""
        pass

    @abstractmethod
    async def test_connection(self) -> dict[str, Any]:
        """Check credentials and reachability; returns ``{success, message}``."""
        pass


class AnthropicChatAdapter(ChatAdapter):
    """Chat adapter over the Anthropic messages API with retry logic."""

    service_type = AiServiceType.ANTHROPIC

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float | None = None,
    ):
        """Initialize the adapter.

        Args:
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
            model: Model name used when a call does not specify one.
            timeout: Per-request HTTP timeout in seconds.
        """
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY environment variable "
                "or pass api_key parameter."
            )
        self.model = model
        kwargs: dict[str, Any] = {"api_key": self.api_key}
        if timeout is not None:
            kwargs["timeout"] = timeout
        self._client = anthropic.Anthropic(**kwargs)

    async def chat(
        self, messages: list[ChatMessage], options: dict[str, Any] | None = None
    ) -> ChatResult:
        options = options or {}
        system = "\n\n".join(m.content for m in messages if m.role == "system") or None
        conversation = [
            {"role": m.role, "content": m.content} for m in messages if m.role != "system"
        ]

        response = await self._call_with_retry(
            messages=conversation,
            system=system,
            model=options.get("model", self.model),
            max_tokens=options.get("max_tokens", 4096),
            temperature=options.get("temperature", 0.7),
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = None
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
        return ChatResult(content=text, usage=usage)

    async def test_connection(self) -> dict[str, Any]:
        try:
            await self.chat([ChatMessage(role="user", content="ping")], {"max_tokens": 8})
        except Exception as e:
            return {"success": False, "message": f"Connection failed: {e}"}
        return {"success": True, "message": f"Connected to {self.model}"}

    async def _call_with_retry(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> anthropic.types.Message:
        """Call the API with exponential backoff on rate limits and server errors.

        Raises:
            anthropic.APIError: If all retries fail
        """
        last_error: Exception | None = None
        delay = RETRY_DELAY

        for attempt in range(MAX_RETRIES):
            try:
                kwargs: dict[str, Any] = {
                    "model": model,
                    "max_tokens": max_tokens,
                    "messages": messages,
                    "temperature": temperature,
                }
                if system:
                    kwargs["system"] = system

                # Run sync client in thread pool
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(
                    None, lambda: self._client.messages.create(**kwargs)
                )

            except anthropic.RateLimitError as e:
                last_error = e
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay *= RETRY_MULTIPLIER

            except anthropic.APIStatusError as e:
                if e.status_code >= 500:
                    last_error = e
                    logger.warning(
                        f"Server error {e.status_code} (attempt {attempt + 1}/{MAX_RETRIES}), "
                        f"retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                    delay *= RETRY_MULTIPLIER
                else:
                    raise

        raise last_error or RuntimeError("Unexpected retry failure")


_FACTORIES: dict[AiServiceType, type[ChatAdapter]] = {
    AiServiceType.ANTHROPIC: AnthropicChatAdapter,
}


def create_adapter(service_type: AiServiceType | str, **kwargs: Any) -> ChatAdapter:
    """Instantiate the adapter for a service type.

    Raises:
        ChatAdapterError: If the type has no adapter.
    """
    try:
        adapter_cls = _FACTORIES[AiServiceType(service_type)]
    except (KeyError, ValueError):
        raise ChatAdapterError(
            f"Unsupported AI service type: {service_type}", service=str(service_type)
        ) from None
    return adapter_cls(**kwargs)


class ChatAdapterRegistry:
    """Adapters keyed by AI service id, with an optional default."""

    def __init__(self, default: ChatAdapter | None = None):
        self._adapters: dict[str, ChatAdapter] = {}
        self._default = default

    def register(self, service_id: str, adapter: ChatAdapter) -> None:
        """Bind an adapter to an AI service id."""
        self._adapters[service_id] = adapter

    def set_default(self, adapter: ChatAdapter | None) -> None:
        """Adapter used when a task names no service or an unknown one."""
        self._default = adapter

    def get(self, service_id: str | None = None) -> ChatAdapter:
        """Adapter for a service id, falling back to the default.

        Raises:
            ChatAdapterError: If neither is available.
        """
        if service_id and service_id in self._adapters:
            return self._adapters[service_id]
        if self._default is not None:
            return self._default
        raise ChatAdapterError(
            f"No AI service configured for {service_id or 'default'}", service=service_id
        )
