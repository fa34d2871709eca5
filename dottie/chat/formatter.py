"""Message normalization, sanitization and validation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dottie.chat.errors import ValidationError
from dottie.chat.models import Role, now_iso

if TYPE_CHECKING:
    from collections.abc import Iterable

    from dottie.chat.models import Message

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 4000
ELLIPSIS = "..."

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


@dataclass
class FormattedMessage:
    """Canonical message record produced by the formatters."""

    role: Role
    content: str
    formatted_at: str
    original_length: int
    final_length: int
    was_truncated: bool = False
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationRules:
    """Rules for :func:`validate_message_content`.

    Length and blocked-pattern violations are errors. Required-pattern
    misses are only warnings, so callers can warn and continue.
    """

    min_length: int = 1
    max_length: int = DEFAULT_MAX_LENGTH
    allow_empty: bool = False
    blocked_patterns: list[str] = field(default_factory=list)
    required_patterns: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def sanitize(text: str) -> str:
    """Strip NUL and other control characters, keeping tab/newline/CR."""
    return _CONTROL_CHARS.sub("", text)


def _require_text(content: object, what: str) -> str:
    if not isinstance(content, str) or not content:
        msg = f"{what} content must be a non-empty string"
        raise ValidationError(msg)
    return content


def format_user_message(
    content: str,
    user_id: str | None,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    trim: bool = True,
    validate: bool = True,
) -> FormattedMessage:
    """Normalize user-authored text.

    Trims whitespace, strips control characters, then truncates to
    *max_length* characters plus an ellipsis marker.

    Raises:
        ValidationError: If *validate* is set and the content is not a
            non-empty string (also after trimming).
    """
    if validate:
        _require_text(content, "Message")
    text = content or ""
    if trim:
        text = text.strip()
    text = sanitize(text)
    if validate and not text:
        msg = "Message content cannot be empty"
        raise ValidationError(msg)

    truncated = len(text) > max_length
    if truncated:
        logger.warning("Message truncated from %d to %d characters", len(text), max_length)
        text = text[:max_length] + ELLIPSIS

    return FormattedMessage(
        role=Role.USER,
        content=text,
        user_id=user_id,
        formatted_at=now_iso(),
        original_length=len(content or ""),
        final_length=len(text),
        was_truncated=truncated,
    )


def format_assistant_message(
    content: str,
    metadata: dict[str, Any] | None = None,
    *,
    include_metadata: bool = True,
    trim: bool = True,
    validate: bool = True,
) -> FormattedMessage:
    """Normalize generated reply text. Same sanitization, no truncation."""
    if validate:
        _require_text(content, "Assistant message")
    text = content or ""
    if trim:
        text = text.strip()
    text = sanitize(text)
    if validate and not text:
        msg = "Assistant message content cannot be empty"
        raise ValidationError(msg)

    return FormattedMessage(
        role=Role.ASSISTANT,
        content=text,
        formatted_at=now_iso(),
        original_length=len(content or ""),
        final_length=len(text),
        metadata=dict(metadata or {}) if include_metadata else {},
    )


def format_messages_for_ai(
    messages: Iterable[Message],
    *,
    max_history: int = 50,
    system_message: str | None = None,
) -> list[dict[str, str]]:
    """Turn stored messages into ``{"role", "content"}`` pairs for the model.

    Keeps user/assistant turns only, in conversation order, limited to the
    most recent *max_history*. A *system_message* is prepended when given.
    """
    turns = sorted(
        (m for m in messages if m.role in (Role.USER, Role.ASSISTANT)),
        key=lambda m: m.sort_key,
    )
    if max_history >= 0:
        turns = turns[-max_history:] if max_history else []

    formatted = [{"role": m.role.value, "content": m.content} for m in turns]
    if system_message:
        formatted.insert(0, {"role": "system", "content": system_message})
    return formatted


def format_message_for_display(
    message: Message,
    *,
    include_timestamps: bool = True,
    include_metadata: bool = False,
    truncate_length: int | None = None,
) -> dict[str, Any]:
    """Outbound, frontend-ready shape of a stored message."""
    content = message.content
    if truncate_length and len(content) > truncate_length:
        content = content[:truncate_length] + ELLIPSIS

    display: dict[str, Any] = {
        "id": message.id,
        "role": message.role.value,
        "content": content,
        "user_id": message.user_id,
        "parent_message_id": message.parent_message_id,
    }
    if include_timestamps:
        display["timestamp"] = message.created_at
        if message.edited_at:
            display["edited_at"] = message.edited_at
            display["was_edited"] = True
    if include_metadata and message.metadata:
        display["metadata"] = message.metadata
    return display


def validate_message_content(
    content: object, rules: ValidationRules | None = None
) -> ValidationResult:
    """Check *content* against *rules* without raising."""
    rules = rules or ValidationRules()
    result = ValidationResult()

    if content is not None and not isinstance(content, str):
        result.is_valid = False
        result.errors.append("Message content must be a string")
        return result

    if not content or not content.strip():
        if not rules.allow_empty:
            result.is_valid = False
            result.errors.append("Message content cannot be empty")
        return result

    if len(content) < rules.min_length:
        result.is_valid = False
        result.errors.append(f"Message too short (minimum {rules.min_length} characters)")

    if len(content) > rules.max_length:
        result.is_valid = False
        result.errors.append(f"Message too long (maximum {rules.max_length} characters)")

    for pattern in rules.blocked_patterns:
        if re.search(pattern, content, re.IGNORECASE):
            result.is_valid = False
            result.errors.append("Message contains blocked content")
            break

    for pattern in rules.required_patterns:
        if not re.search(pattern, content, re.IGNORECASE):
            result.warnings.append(f"Message should contain: {pattern}")

    return result
