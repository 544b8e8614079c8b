"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from gvflow.config import Settings
from gvflow.db.database import close_database, init_database
from gvflow.llm.adapters import AiServiceType, ChatAdapter, ChatAdapterRegistry, ChatMessage, ChatResult
from gvflow.main import app
from gvflow.services.container import ServiceContainer, build_services


class FakeChatAdapter(ChatAdapter):
    """Records prompts and returns a canned reply instead of calling an AI service."""

    service_type = AiServiceType.ANTHROPIC

    def __init__(self) -> None:
        self.reply = "fake reply"
        self.error: Exception | None = None
        self.calls: list[list[ChatMessage]] = []

    async def chat(
        self, messages: list[ChatMessage], options: dict[str, Any] | None = None
    ) -> ChatResult:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return ChatResult(content=self.reply, usage={"input_tokens": 1, "output_tokens": 1})

    async def test_connection(self) -> dict[str, Any]:
        return {"success": True, "message": "fake"}


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    await init_database(db_path)

    yield

    await close_database()
    os.unlink(db_path)


@pytest.fixture
def settings() -> Settings:
    """Settings with background timers pushed far into the future."""
    return Settings(
        database_path=":memory:",
        heartbeat_seconds=3600,
        client_cleanup_seconds=3600,
        reconcile_seconds=3600,
        ai_timeout_seconds=5,
    )


@pytest.fixture
def fake_adapter() -> FakeChatAdapter:
    """A chat adapter that never leaves the process."""
    return FakeChatAdapter()


@pytest.fixture
async def services(
    settings: Settings, fake_adapter: FakeChatAdapter
) -> AsyncGenerator[ServiceContainer, None]:
    """Started services wired to the test database and the fake adapter."""
    container = build_services(settings, adapters=ChatAdapterRegistry(default=fake_adapter))
    await container.start()

    yield container

    await container.shutdown()


@pytest.fixture
async def client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    app.state.services = services
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
