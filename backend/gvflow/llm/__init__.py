"""AI chat collaborator adapters."""

from gvflow.llm.adapters import (
    AiServiceType,
    AnthropicChatAdapter,
    ChatAdapter,
    ChatAdapterRegistry,
    ChatMessage,
    ChatResult,
    create_adapter,
)

__all__ = [
    "AiServiceType",
    "AnthropicChatAdapter",
    "ChatAdapter",
    "ChatAdapterRegistry",
    "ChatMessage",
    "ChatResult",
    "create_adapter",
]
