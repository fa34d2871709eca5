"""Data models for conversations, messages and generated responses."""

from __future__ import annotations

import json
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from dottie.chat.errors import InvalidIdFormatError

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_ID_KEYS = ("id", "conversationId", "conversation_id")


def make_id() -> str:
    """Generate a new message, conversation or envelope ID."""
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Role(str, Enum):
    """Message author."""

    USER = "user"
    ASSISTANT = "assistant"


class ServiceMode(str, Enum):
    """Which reply backend the coordinator should use."""

    AI = "ai"
    MOCK = "mock"


class ResponseSource(str, Enum):
    AI = "ai"
    MOCK = "mock"
    FALLBACK = "fallback"
    SYSTEM = "system"


class EnvelopeType(str, Enum):
    TEXT = "text"
    ERROR = "error"
    TYPING = "typing"
    SUMMARY = "summary"


class ExchangeState(str, Enum):
    """Lifecycle of one user→assistant exchange."""

    PENDING_USER_WRITE = "pending_user_write"
    PENDING_REPLY = "pending_reply"
    FAILED_RECOVERED = "failed_recovered"
    PERSISTED = "persisted"


# -- Conversation IDs ----------------------------------------------------------


@dataclass(frozen=True)
class ConversationId:
    """Validated conversation identifier.

    Build one with :func:`coerce_conversation_id` at the API boundary;
    everything below the coordinator works with plain validated strings.
    """

    value: str

    def __post_init__(self) -> None:
        if not _ID_PATTERN.match(self.value):
            msg = f"Invalid conversation ID format: {self.value!r}"
            raise InvalidIdFormatError(msg)

    def __str__(self) -> str:
        return self.value


def coerce_conversation_id(raw: object) -> ConversationId:
    """Coerce a boundary value into a ``ConversationId`` or fail fast.

    Accepts an existing ``ConversationId``, a string, a ``uuid.UUID`` or a
    mapping with an ``id`` / ``conversationId`` / ``conversation_id`` key.
    """
    if isinstance(raw, ConversationId):
        return raw
    if isinstance(raw, uuid.UUID):
        return ConversationId(raw.hex)
    if isinstance(raw, str):
        return ConversationId(raw.strip())
    if isinstance(raw, Mapping):
        for key in _ID_KEYS:
            value = raw.get(key)
            if isinstance(value, (str, uuid.UUID)):
                return coerce_conversation_id(value)
    msg = f"Cannot build a conversation ID from {type(raw).__name__}"
    raise InvalidIdFormatError(msg)


# -- Persisted records ---------------------------------------------------------


@dataclass
class Message:
    """A persisted conversation message.

    Attributes:
        id: Unique identifier (UUID hex).
        conversation_id: Owning conversation.
        role: ``Role.USER`` or ``Role.ASSISTANT``.
        content: Sanitized message text.
        created_at: ISO 8601 timestamp.
        user_id: Author, set on user messages only.
        parent_message_id: The message this one replies to (threading).
        edited_at: ISO 8601 timestamp of the last edit.
        metadata: Generator metadata for assistant replies.
        seq: Per-conversation insertion sequence, assigned by the store.
            Breaks ties between messages that share a ``created_at``.
    """

    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: str = ""
    user_id: str | None = None
    parent_message_id: str | None = None
    edited_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    def __post_init__(self) -> None:
        self.role = Role(self.role)
        if not self.created_at:
            self.created_at = now_iso()

    @property
    def sort_key(self) -> tuple[str, int]:
        return (self.created_at, self.seq)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``chat_messages`` column order."""
        return (
            self.id,
            self.conversation_id,
            self.seq,
            self.role.value,
            self.content,
            self.user_id,
            self.parent_message_id,
            self.created_at,
            self.edited_at,
            json.dumps(self.metadata) if self.metadata else None,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        """Deserialize from a ``chat_messages`` row tuple."""
        return cls(
            id=row[0],
            conversation_id=row[1],
            seq=row[2],
            role=Role(row[3]),
            content=row[4],
            user_id=row[5],
            parent_message_id=row[6],
            created_at=row[7],
            edited_at=row[8],
            metadata=json.loads(row[9]) if row[9] else {},
        )


@dataclass
class Conversation:
    """Conversation metadata. Exactly one owner per conversation."""

    id: str
    user_id: str
    assessment_id: str | None = None
    assessment_pattern: str | None = None
    created_at: str = ""
    updated_at: str = ""
    preview: str | None = None

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_row(self) -> tuple:
        return (
            self.id,
            self.user_id,
            self.assessment_id,
            self.assessment_pattern,
            self.created_at,
            self.updated_at,
            self.preview,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            user_id=row[1],
            assessment_id=row[2],
            assessment_pattern=row[3],
            created_at=row[4],
            updated_at=row[5],
            preview=row[6],
        )


@dataclass
class ConversationHistory:
    """A conversation plus its messages in conversation order."""

    conversation: Conversation
    messages: list[Message] = field(default_factory=list)

    @property
    def assessment_pattern(self) -> str | None:
        return self.conversation.assessment_pattern

    def latest_user_message(self) -> Message | None:
        users = [m for m in self.messages if m.role is Role.USER]
        if not users:
            return None
        return max(users, key=lambda m: m.sort_key)

    def before(self, message_id: str) -> list[Message]:
        """Return the messages ordered strictly before *message_id*.

        Falls back to the full history when the message is not present.
        """
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return self.messages[:index]
        return list(self.messages)


# -- Generated responses -------------------------------------------------------


class ResponseEnvelope(BaseModel):
    """Uniform wrapper around generated reply content and its provenance."""

    id: str = Field(default_factory=make_id)
    content: str
    type: EnvelopeType = EnvelopeType.TEXT
    source: ResponseSource = ResponseSource.SYSTEM
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    timestamp: str = Field(default_factory=now_iso)
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ResponseOption:
    """An unsent reply candidate produced by ``generate_response_options``."""

    rank: int
    envelope: ResponseEnvelope


@dataclass
class Exchange:
    """Result of sending one user message (and usually its reply)."""

    user_message: Message
    conversation_id: str
    assistant_message: Message | None = None
    state: ExchangeState = ExchangeState.PERSISTED
    recovered: bool = False
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        """Shape returned to the route layer."""
        from dottie.chat.formatter import format_message_for_display

        return {
            "userMessage": format_message_for_display(self.user_message),
            "assistantMessage": (
                format_message_for_display(self.assistant_message, include_metadata=True)
                if self.assistant_message
                else None
            ),
            "conversationId": self.conversation_id,
            "timestamp": self.timestamp,
        }


@dataclass
class EditResult:
    """Result of ``edit_message_with_regeneration``."""

    updated_message: Message
    conversation_id: str
    new_response: Message | None = None
    timestamp: str = field(default_factory=now_iso)
