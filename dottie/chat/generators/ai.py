"""Reply generators backed by the Claude API.

Both generators return a ``GenerationResult`` instead of raising. When the
backend call fails the result carries the error plus a reply built from a
local fallback template, so the caller always has something to persist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from dottie.chat.errors import GenerationError
from dottie.chat.formatter import format_messages_for_ai
from dottie.chat.models import now_iso
from dottie.chat.responses import (
    build_ai_response,
    build_assessment_response,
    build_fallback_response,
)
from dottie.llm.prompt import build_system_prompt

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dottie.chat.models import Message, ResponseEnvelope
    from dottie.llm.client import AiClient, Completion

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 20

# stop_reason -> confidence reported on the envelope
_CONFIDENCE = {
    "end_turn": 0.8,
    "stop_sequence": 0.8,
    "max_tokens": 0.5,
}
_DEFAULT_CONFIDENCE = 0.7


@dataclass
class GenerationResult:
    """Outcome of one generation call.

    ``envelope`` is always set. ``error`` is set when the AI backend failed
    and ``envelope`` is a fallback reply.
    """

    envelope: ResponseEnvelope
    error: GenerationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _confidence(stop_reason: str | None) -> float:
    return _CONFIDENCE.get(stop_reason or "", _DEFAULT_CONFIDENCE)


def _as_generation_error(exc: Exception) -> GenerationError:
    if isinstance(exc, GenerationError):
        return exc
    err = GenerationError(f"Unexpected generation failure: {exc}")
    err.__cause__ = exc
    return err


def _initial_fallback(assessment_pattern: str | None) -> str:
    if assessment_pattern:
        return (
            f"Hello! I see you'd like to talk about your {assessment_pattern} "
            "assessment result. I'm here to help you understand what it means for "
            "your cycle. What would you like to know first?"
        )
    return (
        "Hello! I'm here to help you understand your cycle and symptoms. "
        "What's on your mind today?"
    )


def _follow_up_fallback(history_size: int, assessment_pattern: str | None) -> str:
    if assessment_pattern:
        return (
            f"Thanks for continuing our conversation about your {assessment_pattern} "
            "result. Could you tell me more about what you'd like to explore?"
        )
    if history_size < 5:
        return (
            "Thank you for sharing that with me. Can you tell me a bit more about "
            "what you're experiencing?"
        )
    return (
        "Building on what we've discussed so far, I'd like to hear more about "
        "how things have been for you."
    )


def _envelope(
    completion: Completion, assessment_pattern: str | None, metadata: dict[str, Any]
) -> ResponseEnvelope:
    confidence = _confidence(completion.stop_reason)
    metadata = {
        **metadata,
        "model": completion.model,
        "assessment_pattern": assessment_pattern,
        "generated_at": now_iso(),
        "tokens_used": completion.tokens_used,
        "response_time": completion.response_time_ms,
        "stop_reason": completion.stop_reason,
        "confidence": confidence,
    }
    if assessment_pattern:
        return build_assessment_response(
            completion.content, assessment_pattern, metadata, confidence=confidence
        )
    return build_ai_response(completion.content, metadata)


async def generate_initial_response(
    client: AiClient,
    message_text: str,
    assessment_pattern: str | None = None,
) -> GenerationResult:
    """Generate the reply to the first message of a conversation."""
    system_prompt = build_system_prompt(assessment_pattern, follow_up=False)
    turns = [{"role": "user", "content": message_text}]
    try:
        completion = await client.complete(system_prompt, turns)
    except Exception as exc:
        error = _as_generation_error(exc)
        logger.warning("Initial AI generation failed, using fallback: %s", error)
        envelope = build_fallback_response(
            _initial_fallback(assessment_pattern),
            reason="ai_error",
            extra={"assessment_pattern": assessment_pattern, "is_initial": True,
                   "error": str(error)},
        )
        return GenerationResult(envelope=envelope, error=error)

    logger.info(
        "Initial AI reply: %d tokens in %dms", completion.tokens_used, completion.response_time_ms
    )
    envelope = _envelope(
        completion,
        assessment_pattern,
        {"is_initial": True, "is_follow_up": False, "conversation_length": 0,
         "context_aware": bool(assessment_pattern)},
    )
    return GenerationResult(envelope=envelope)


async def generate_follow_up_response(
    client: AiClient,
    message_text: str,
    history: Sequence[Message] = (),
    assessment_pattern: str | None = None,
    *,
    history_window: int = DEFAULT_HISTORY_WINDOW,
) -> GenerationResult:
    """Generate a reply in an ongoing conversation.

    *history* holds the messages preceding *message_text*; only the most
    recent *history_window* of them are sent to the model.
    """
    system_prompt = build_system_prompt(assessment_pattern, follow_up=True)
    turns = format_messages_for_ai(history, max_history=history_window)
    turns.append({"role": "user", "content": message_text})
    try:
        completion = await client.complete(system_prompt, turns)
    except Exception as exc:
        error = _as_generation_error(exc)
        logger.warning("Follow-up AI generation failed, using fallback: %s", error)
        envelope = build_fallback_response(
            _follow_up_fallback(len(history), assessment_pattern),
            reason="ai_error",
            extra={
                "assessment_pattern": assessment_pattern,
                "is_follow_up": True,
                "conversation_length": len(history),
                "error": str(error),
            },
        )
        return GenerationResult(envelope=envelope, error=error)

    logger.info(
        "Follow-up AI reply: %d tokens in %dms (history=%d)",
        completion.tokens_used,
        completion.response_time_ms,
        len(history),
    )
    envelope = _envelope(
        completion,
        assessment_pattern,
        {"is_follow_up": True, "conversation_length": len(history), "context_aware": True},
    )
    return GenerationResult(envelope=envelope)
