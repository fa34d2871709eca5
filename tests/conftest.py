"""Shared test fixtures."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dottie.chat.coordinator import ResponseCoordinator
from dottie.chat.store import InMemoryConversationStore
from dottie.config import Settings
from dottie.llm.client import AiClient


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("dottie.config.settings.turso_database_url", "")


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def mock_config() -> Settings:
    """Settings pinned to mock mode."""
    return Settings(chat_service_mode="mock")


@pytest.fixture
def ai_config() -> Settings:
    """Settings that select the AI backend."""
    return Settings(anthropic_api_key="sk-test", chat_service_mode="ai")


@pytest.fixture
def coordinator(store: InMemoryConversationStore, mock_config: Settings) -> ResponseCoordinator:
    """Coordinator over an in-memory store, replying with mock generators."""
    return ResponseCoordinator(store, config=mock_config)


def _api_response(
    text: str = "Here is some helpful information.",
    stop_reason: str = "end_turn",
    model: str = "claude-haiku-4-5-20251001",
) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)] if text else [],
        stop_reason=stop_reason,
        model=model,
        usage=SimpleNamespace(input_tokens=12, output_tokens=30),
    )


@pytest.fixture
def api_response():
    """Factory for objects shaped like an Anthropic ``Message`` response."""
    return _api_response


@pytest.fixture
def make_ai_client():
    """Factory returning ``(AiClient, sdk_mock)`` over a mocked Anthropic client."""

    def _make(*, response=None, side_effect=None, timeout: float = 5.0):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(
            return_value=response if response is not None else _api_response(),
            side_effect=side_effect,
        )
        return AiClient(sdk, model="haiku", max_tokens=256, timeout=timeout), sdk

    return _make
