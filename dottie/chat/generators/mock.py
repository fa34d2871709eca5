"""Deterministic keyword-driven reply generators for mock mode.

Used when no AI backend is configured (or ``CHAT_SERVICE_MODE=mock``). No
network calls; replies are picked from canned templates by matching
keywords in the lowercased message. Rules are checked in a fixed priority
order and the first match wins:

    greeting > help/question > concern (pain, flow, late, worry)
    > assessment context > fallback

Every reply ends with a developer disclaimer so mock output is never
mistaken for the real assistant.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from dottie.chat.models import now_iso
from dottie.chat.responses import build_mock_response

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dottie.chat.models import Message, ResponseEnvelope

logger = logging.getLogger(__name__)

DISCLAIMER = (
    "*Note: This is a placeholder response for developers. Configure an "
    "Anthropic API key to enable personalized AI responses.*"
)


def _words(*keywords: str) -> re.Pattern[str]:
    return re.compile(r"\b(" + "|".join(keywords) + r")\b")


# (category, pattern) in priority order
_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("greeting", _words("hi", "hello", "hey", "good morning", "good evening")),
    ("help", _words("help", "question", "questions", "how", "what", "explain")),
    ("pain", _words("pain", "painful", "cramp", "cramps", "cramping", "ache", "aches", "hurts?")),
    ("flow", _words("flow", "heavy", "bleeding", "clots?", "spotting", "light")),
    ("late", _words("late", "missed", "irregular", "skipped", "delayed")),
    ("worry", _words("worried", "worry", "worrying", "scared", "concern", "concerned",
                     "problem", "issue", "normal")),
    ("assessment", _words("assessment", "results?", "pattern", "score")),
]

_GREETING = {
    "initial": (
        "Hi, I'm Dottie! I'm glad you're here. I can help you make sense of your "
        "cycle, your symptoms and your assessment results. What would you like "
        "to talk about?"
    ),
    "follow_up": (
        "Hi again! I'm still here. What else would you like to know about your "
        "cycle or symptoms?"
    ),
}

_HELP = (
    "I'm happy to help! You can ask me about cycle length, period flow, pain "
    "and cramps, mood or energy changes, or what your assessment result "
    "means. What's on your mind?"
)

_CONCERNS = {
    "pain": (
        "I'm sorry you're dealing with period pain. Cramps are common, but pain "
        "that stops you from doing everyday things deserves attention. Heat, "
        "gentle movement and over-the-counter pain relievers help many people. "
        "If your pain is severe, getting worse, or not eased by those, please "
        "talk to a healthcare provider."
    ),
    "flow": (
        "Flow varies from person to person, and it can change from one cycle to "
        "the next. Soaking through a pad or tampon every hour, passing large "
        "clots, or bleeding for more than seven days is worth checking with a "
        "healthcare provider."
    ),
    "late": (
        "A late or irregular period isn't always a sign that something is wrong. "
        "Many factors can affect cycle length, including stress, exercise, weight "
        "changes, sleep and travel. If your cycles are regularly shorter than 21 "
        "or longer than 35 days, it's worth mentioning to a healthcare provider."
    ),
    "worry": (
        "It sounds like something is worrying you, and that's completely "
        "understandable. Can you tell me a bit more about what you've noticed? "
        "Together we can figure out whether it's something common or something "
        "to raise with a healthcare provider."
    ),
}

_ASSESSMENT = (
    "Thanks for completing the assessment. Your result points to a "
    "**{pattern}** pattern. I can walk you through what that usually means, "
    "the symptoms that often go with it, and some things that may help. Where "
    "would you like to start?"
)

_ASSESSMENT_CONTEXT = (
    "Since your assessment result was **{pattern}**, we can also look at how "
    "this relates to that pattern."
)

_INITIAL_FALLBACK = (
    "Welcome! I'm Dottie, and I'm here to help you understand your cycle and "
    "symptoms. Tell me a little about what you've been noticing lately."
)

_FOLLOW_UP_BUCKETS = (
    (3, "Thanks for telling me more. How long are your cycles usually, and "
        "which symptoms bother you the most?"),
    (10, "That's helpful context. Based on what we've talked about so far, is "
         "there anything that has changed recently in your cycle?"),
)
_FOLLOW_UP_LONG = (
    "We've covered a lot together. Is there one thing you'd like to focus on "
    "next, or anything from earlier you'd like me to go over again?"
)

_HARDCODED_INITIAL = "Hello! I'm here to help you with questions about your cycle. How can I help today?"
_HARDCODED_FOLLOW_UP = "Thanks for sharing that. Could you tell me a bit more about what you're noticing?"


def _match(text: str, *, has_pattern: bool) -> tuple[str | None, str | None]:
    """Return ``(category, keyword)`` for the first matching rule."""
    lowered = text.lower()
    for category, pattern in _RULES:
        if category == "assessment" and not has_pattern:
            continue
        found = pattern.search(lowered)
        if found:
            return category, found.group(0)
    return None, None


def _with_disclaimer(content: str) -> str:
    return f"{content}\n\n{DISCLAIMER}"


def _compose(
    category: str | None,
    stage: str,
    assessment_pattern: str | None,
    history_size: int,
) -> tuple[str, str]:
    """Return ``(content, response_category)``."""
    if category == "greeting":
        content = _GREETING[stage]
    elif category == "help":
        content = _HELP
    elif category in _CONCERNS:
        content = _CONCERNS[category]
    elif category == "assessment" or (stage == "initial" and assessment_pattern):
        return _ASSESSMENT.format(pattern=assessment_pattern), "assessment"
    elif stage == "initial":
        return _INITIAL_FALLBACK, "welcome"
    else:
        content = _FOLLOW_UP_LONG
        for limit, text in _FOLLOW_UP_BUCKETS:
            if history_size < limit:
                content = text
                break
        category = "contextual"

    if assessment_pattern:
        content = f"{content} {_ASSESSMENT_CONTEXT.format(pattern=assessment_pattern)}"
    return content, category


def _metadata(
    category: str,
    keyword: str | None,
    assessment_pattern: str | None,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "pattern_matched": category if keyword else None,
        "keyword_matched": keyword,
        "response_category": category,
        "assessment_pattern": assessment_pattern,
        "generated_at": now_iso(),
        **extra,
    }


async def generate_initial_response(
    message_text: str, assessment_pattern: str | None = None
) -> ResponseEnvelope:
    """Canned reply to the first message of a conversation. Never raises."""
    try:
        category, keyword = _match(message_text, has_pattern=bool(assessment_pattern))
        content, category = _compose(category, "initial", assessment_pattern, 0)
        logger.info("Mock initial reply: category=%s", category)
        return build_mock_response(
            _with_disclaimer(content),
            _metadata(category, keyword, assessment_pattern, is_initial=True),
        )
    except Exception as exc:
        logger.exception("Mock initial generator failed")
        return build_mock_response(
            _with_disclaimer(_HARDCODED_INITIAL),
            {"response_category": "fallback", "error": str(exc), "is_initial": True},
        )


async def generate_follow_up_response(
    message_text: str,
    history: Sequence[Message] = (),
    assessment_pattern: str | None = None,
) -> ResponseEnvelope:
    """Canned reply to a message in an ongoing conversation. Never raises.

    When no keyword matches, the reply is picked by how long the
    conversation already is.
    """
    try:
        category, keyword = _match(message_text, has_pattern=bool(assessment_pattern))
        content, category = _compose(category, "follow_up", assessment_pattern, len(history))
        logger.info("Mock follow-up reply: category=%s history=%d", category, len(history))
        return build_mock_response(
            _with_disclaimer(content),
            _metadata(
                category,
                keyword,
                assessment_pattern,
                conversation_length=len(history),
                is_follow_up=True,
                context_aware=True,
            ),
        )
    except Exception as exc:
        logger.exception("Mock follow-up generator failed")
        return build_mock_response(
            _with_disclaimer(_HARDCODED_FOLLOW_UP),
            {"response_category": "fallback", "error": str(exc), "is_follow_up": True},
        )
