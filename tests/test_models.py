"""Tests for model name resolution."""

from dottie.llm.models import DEFAULT_MODEL, MODEL_MAP, friendly, resolve_model


def test_resolves_friendly_names() -> None:
    assert resolve_model("haiku") == MODEL_MAP["haiku"]
    assert resolve_model("Sonnet") == MODEL_MAP["sonnet"]
    assert resolve_model(" opus ") == MODEL_MAP["opus"]


def test_full_id_passes_through() -> None:
    assert resolve_model(MODEL_MAP["sonnet"]) == MODEL_MAP["sonnet"]


def test_unknown_claude_id_passes_through() -> None:
    assert resolve_model("claude-future-9") == "claude-future-9"


def test_unknown_name_falls_back_to_default() -> None:
    assert resolve_model("gpt-4") == MODEL_MAP[DEFAULT_MODEL]


def test_friendly() -> None:
    assert friendly(MODEL_MAP["haiku"]) == "haiku"
    assert friendly("claude-future-9") == "claude-future-9"
