"""Tests for the keyword-driven mock reply generators."""

from unittest.mock import patch

import pytest

from dottie.chat.generators.mock import (
    DISCLAIMER,
    generate_follow_up_response,
    generate_initial_response,
)
from dottie.chat.models import Message, ResponseSource


def _history(n: int) -> list[Message]:
    return [
        Message(id=str(i), conversation_id="c", role="user" if i % 2 == 0 else "assistant",
                content=f"m{i}", seq=i)
        for i in range(n)
    ]


async def test_pain_message_mentions_pain_and_disclaimer() -> None:
    envelope = await generate_initial_response("I have severe pain during my period")
    assert "pain" in envelope.content
    assert "placeholder response for developers" in envelope.content
    assert "over-the-counter pain relievers" in envelope.content
    assert "healthcare provider" in envelope.content
    assert envelope.metadata["response_category"] == "pain"
    assert envelope.metadata["keyword_matched"] == "pain"


@pytest.mark.parametrize(
    ("text", "category", "phrase"),
    [
        ("Hello there", "greeting", "I'm Dottie"),
        ("Can you help me understand this?", "help", "happy to help"),
        ("My flow has been really heavy", "flow", "Flow varies from person to person"),
        ("My period is late this month", "late", "factors can affect cycle length"),
        ("I'm worried about something", "worry", "worrying you"),
        ("Just checking in", "welcome", "Welcome!"),
    ],
)
async def test_initial_categories(text: str, category: str, phrase: str) -> None:
    envelope = await generate_initial_response(text)
    assert envelope.metadata["response_category"] == category
    assert phrase in envelope.content


async def test_late_mentions_lifestyle_factors() -> None:
    envelope = await generate_initial_response("My period is late")
    assert "stress, exercise, weight changes" in envelope.content


async def test_priority_greeting_beats_pain() -> None:
    envelope = await generate_initial_response("hi, I have cramps")
    assert envelope.metadata["response_category"] == "greeting"


async def test_priority_help_beats_concern() -> None:
    envelope = await generate_initial_response("how do I deal with pain")
    assert envelope.metadata["response_category"] == "help"


async def test_keywords_match_whole_words_only() -> None:
    # "this" contains "hi", "spaint" contains "pain"
    envelope = await generate_initial_response("this spaint thing")
    assert envelope.metadata["response_category"] == "welcome"


async def test_initial_with_pattern_and_no_keyword_uses_assessment_template() -> None:
    envelope = await generate_initial_response("Just checking in", "irregular cycles")
    assert envelope.metadata["response_category"] == "assessment"
    assert "**irregular cycles**" in envelope.content


async def test_pattern_appended_as_context_to_keyword_reply() -> None:
    envelope = await generate_initial_response("I have pain", "heavy flow")
    assert envelope.metadata["response_category"] == "pain"
    assert "Since your assessment result was **heavy flow**" in envelope.content
    assert envelope.metadata["assessment_pattern"] == "heavy flow"


@pytest.mark.parametrize(
    ("size", "phrase"),
    [
        (0, "Thanks for telling me more"),
        (2, "Thanks for telling me more"),
        (3, "That's helpful context"),
        (9, "That's helpful context"),
        (10, "We've covered a lot together"),
    ],
)
async def test_follow_up_length_buckets(size: int, phrase: str) -> None:
    envelope = await generate_follow_up_response("okay sure", _history(size))
    assert envelope.metadata["response_category"] == "contextual"
    assert envelope.metadata["conversation_length"] == size
    assert phrase in envelope.content


async def test_follow_up_assessment_keyword_needs_pattern() -> None:
    with_pattern = await generate_follow_up_response("tell me about my result", _history(2), "regular")
    without = await generate_follow_up_response("tell me about my result", _history(2))
    assert with_pattern.metadata["response_category"] == "assessment"
    assert without.metadata["response_category"] == "contextual"


async def test_follow_up_greeting_differs_from_initial() -> None:
    initial = await generate_initial_response("hey")
    follow_up = await generate_follow_up_response("hey", _history(4))
    assert initial.content != follow_up.content
    assert follow_up.metadata["is_follow_up"] is True


@pytest.mark.parametrize("text", ["hello", "pain", "", "???", "x" * 5000])
async def test_always_full_confidence_and_disclaimer(text: str) -> None:
    for envelope in (
        await generate_initial_response(text),
        await generate_follow_up_response(text, _history(3), "regular"),
    ):
        assert envelope.confidence == 1.0
        assert envelope.source is ResponseSource.MOCK
        assert envelope.content
        assert envelope.content.endswith(DISCLAIMER)


async def test_internal_error_returns_hardcoded_reply() -> None:
    with patch("dottie.chat.generators.mock._compose", side_effect=RuntimeError("boom")):
        initial = await generate_initial_response("hello")
        follow_up = await generate_follow_up_response("hello", _history(1))
    for envelope in (initial, follow_up):
        assert envelope.confidence == 1.0
        assert envelope.metadata["response_category"] == "fallback"
        assert envelope.metadata["error"] == "boom"
        assert "placeholder response for developers" in envelope.content
