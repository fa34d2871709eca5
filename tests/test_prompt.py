"""Tests for prompt assembly."""

from unittest.mock import patch

from dottie.llm.prompt import DEFAULT_PERSONA, build_system_prompt


def test_contains_persona() -> None:
    prompt = build_system_prompt()
    assert "Dottie" in prompt
    assert "healthcare provider" in prompt


def test_initial_and_follow_up_guidance_differ() -> None:
    initial = build_system_prompt()
    follow_up = build_system_prompt(follow_up=True)
    assert "start of a new conversation" in initial
    assert "continuing an ongoing conversation" in follow_up
    assert initial != follow_up


def test_assessment_pattern_included() -> None:
    prompt = build_system_prompt("heavy flow", follow_up=False)
    assert "# Assessment" in prompt
    assert "heavy flow" in prompt


def test_no_assessment_section_without_pattern() -> None:
    assert "# Assessment" not in build_system_prompt()


def test_falls_back_to_builtin_persona() -> None:
    with patch("dottie.llm.prompt._read_config", return_value=""):
        prompt = build_system_prompt()
    assert prompt.startswith(DEFAULT_PERSONA)
