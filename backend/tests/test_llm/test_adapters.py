"""Tests for the AI chat adapters.

The Anthropic client is mocked; no network calls are made.
"""

from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest

from gvflow.errors import ChatAdapterError
from gvflow.llm.adapters import (
    AnthropicChatAdapter,
    ChatAdapterRegistry,
    ChatMessage,
    create_adapter,
)


def _response(text: str = "hello") -> MagicMock:
    block = MagicMock(type="text", text=text)
    return MagicMock(content=[block], usage=MagicMock(input_tokens=3, output_tokens=2))


def _rate_limit() -> anthropic.RateLimitError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=request), body=None
    )


@pytest.fixture
def adapter(monkeypatch) -> AnthropicChatAdapter:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return AnthropicChatAdapter(api_key="test-key", model="test-model")


class TestAnthropicChatAdapter:
    """Tests for AnthropicChatAdapter."""

    def test_requires_api_key(self, monkeypatch):
        """Test that a missing key is rejected up front."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key required"):
            AnthropicChatAdapter()

    @pytest.mark.asyncio
    async def test_chat_splits_system_messages(self, adapter):
        """Test that system messages go to the system parameter."""
        create = MagicMock(return_value=_response("pong"))
        with patch.object(adapter._client.messages, "create", create):
            result = await adapter.chat(
                [
                    ChatMessage(role="system", content="Be brief"),
                    ChatMessage(role="user", content="ping"),
                ]
            )

        assert result.content == "pong"
        assert result.usage == {"input_tokens": 3, "output_tokens": 2}
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "ping"}]
        assert kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_retries_rate_limits(self, adapter):
        """Test that rate limits are retried with backoff."""
        create = MagicMock(side_effect=[_rate_limit(), _response("ok")])
        with (
            patch("gvflow.llm.adapters.RETRY_DELAY", 0),
            patch.object(adapter._client.messages, "create", create),
        ):
            result = await adapter.chat([ChatMessage(role="user", content="hi")])

        assert result.content == "ok"
        assert create.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, adapter):
        create = MagicMock(side_effect=_rate_limit())
        with (
            patch("gvflow.llm.adapters.RETRY_DELAY", 0),
            patch.object(adapter._client.messages, "create", create),
        ):
            with pytest.raises(anthropic.RateLimitError):
                await adapter.chat([ChatMessage(role="user", content="hi")])

        assert create.call_count == 3

    @pytest.mark.asyncio
    async def test_connection_failure_reported(self, adapter):
        create = MagicMock(side_effect=RuntimeError("offline"))
        with patch.object(adapter._client.messages, "create", create):
            status = await adapter.test_connection()

        assert status["success"] is False
        assert "offline" in status["message"]


class TestChatAdapterRegistry:
    """Tests for adapter lookup."""

    def test_falls_back_to_default(self, fake_adapter):
        registry = ChatAdapterRegistry(default=fake_adapter)
        assert registry.get("unknown-service") is fake_adapter
        assert registry.get() is fake_adapter

    def test_registered_adapter_wins(self, fake_adapter, adapter):
        registry = ChatAdapterRegistry(default=fake_adapter)
        registry.register("svc-1", adapter)
        assert registry.get("svc-1") is adapter

    def test_nothing_configured(self):
        with pytest.raises(ChatAdapterError):
            ChatAdapterRegistry().get("svc-1")

    def test_create_adapter_unknown_type(self):
        with pytest.raises(ChatAdapterError):
            create_adapter("carrier-pigeon")

    def test_create_adapter(self):
        adapter = create_adapter("anthropic", api_key="k")
        assert isinstance(adapter, AnthropicChatAdapter)
