"""Response envelope builders.

One builder per envelope flavor. Each returns a fresh ``ResponseEnvelope``
with a new ID and timestamp, and sets the source, type and confidence
defaults for its flavor. ``metadata["service"]`` is always present.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dottie.chat.models import EnvelopeType, ResponseEnvelope, ResponseSource, now_iso

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_MESSAGE = (
    "I'm sorry, I'm having trouble generating a response right now. "
    "Please try again in a moment."
)
DEFAULT_SEPARATOR = "\n\n"


def build_response(
    content: str,
    metadata: dict[str, Any] | None = None,
    *,
    type: EnvelopeType = EnvelopeType.TEXT,  # noqa: A002
    source: ResponseSource = ResponseSource.SYSTEM,
    confidence: float | None = None,
) -> ResponseEnvelope:
    """Build a generic envelope. Other builders delegate here."""
    merged = dict(metadata or {})
    merged.setdefault("service", source.value)
    return ResponseEnvelope(
        content=content,
        type=type,
        source=source,
        confidence=confidence,
        metadata=merged,
    )


def build_ai_response(content: str, ai_metadata: dict[str, Any] | None = None) -> ResponseEnvelope:
    ai_metadata = ai_metadata or {}
    metadata = {
        **ai_metadata,
        "service": ResponseSource.AI.value,
        "model": ai_metadata.get("model"),
        "tokens_used": ai_metadata.get("tokens_used"),
        "response_time": ai_metadata.get("response_time"),
    }
    return build_response(
        content,
        metadata,
        source=ResponseSource.AI,
        confidence=ai_metadata.get("confidence"),
    )


def build_mock_response(
    content: str, mock_metadata: dict[str, Any] | None = None
) -> ResponseEnvelope:
    """Mock replies are canned, so they always carry full confidence."""
    mock_metadata = mock_metadata or {}
    metadata = {
        **mock_metadata,
        "service": ResponseSource.MOCK.value,
        "pattern_matched": mock_metadata.get("pattern_matched"),
        "keyword_matched": mock_metadata.get("keyword_matched"),
        "response_category": mock_metadata.get("response_category", "general"),
    }
    return build_response(content, metadata, source=ResponseSource.MOCK, confidence=1.0)


def build_fallback_response(
    content: str | None = None,
    reason: str = "service_unavailable",
    extra: dict[str, Any] | None = None,
) -> ResponseEnvelope:
    """Reply assembled from a local template after the AI backend failed."""
    metadata = {
        **(extra or {}),
        "service": ResponseSource.FALLBACK.value,
        "is_fallback": True,
        "fallback_reason": reason,
    }
    return build_response(
        content or DEFAULT_FALLBACK_MESSAGE,
        metadata,
        source=ResponseSource.FALLBACK,
        confidence=0.5,
    )


def build_error_response(
    error_message: str,
    error_code: str | None = None,
    context: dict[str, Any] | None = None,
) -> ResponseEnvelope:
    metadata = {
        **(context or {}),
        "error": True,
        "error_code": error_code,
        "error_timestamp": now_iso(),
    }
    return build_response(error_message, metadata, type=EnvelopeType.ERROR)


def build_typing_response(estimated_delay_ms: int | None = None) -> ResponseEnvelope:
    metadata = {"is_typing": True, "estimated_delay": estimated_delay_ms}
    return build_response("...", metadata, type=EnvelopeType.TYPING)


def build_assessment_response(
    content: str,
    assessment_pattern: str | None,
    metadata: dict[str, Any] | None = None,
    *,
    source: ResponseSource = ResponseSource.AI,
    confidence: float | None = None,
) -> ResponseEnvelope:
    """Envelope for a reply that was framed by the user's assessment pattern."""
    enhanced = {
        **(metadata or {}),
        "assessment_pattern": assessment_pattern,
        "context_aware": True,
        "has_assessment_context": True,
    }
    return build_response(content, enhanced, source=source, confidence=confidence)


def combine_responses(
    parts: Sequence[ResponseEnvelope], separator: str = DEFAULT_SEPARATOR
) -> ResponseEnvelope:
    """Merge several envelopes into one.

    Content is joined with *separator*; metadata is shallow-merged in order
    (later parts win); confidence is the minimum across parts, with parts
    that carry no confidence counting as 1.0.

    Raises:
        ValueError: If *parts* is empty.
    """
    if not parts:
        msg = "No response parts provided"
        raise ValueError(msg)

    metadata: dict[str, Any] = {}
    for part in parts:
        metadata.update(part.metadata)
    metadata["is_combined"] = True
    metadata["part_count"] = len(parts)
    metadata["combined_at"] = now_iso()

    confidence = min(1.0 if p.confidence is None else p.confidence for p in parts)
    logger.debug("Combined %d response parts (confidence=%.2f)", len(parts), confidence)
    return build_response(
        separator.join(p.content for p in parts),
        metadata,
        confidence=confidence,
    )


def build_summary_response(summary: dict[str, Any]) -> ResponseEnvelope:
    """Human-readable conversation summary."""
    text = (
        "Conversation Summary:\n"
        f"- Messages: {summary.get('total_messages', 0)}\n"
        f"- Started: {summary.get('first_message_at') or 'Unknown'}\n"
        f"- Last activity: {summary.get('last_message_at') or 'Unknown'}"
    )
    metadata = {"is_summary": True, "summary_data": summary}
    return build_response(text, metadata, type=EnvelopeType.SUMMARY, confidence=1.0)
