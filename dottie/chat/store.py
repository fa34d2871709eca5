"""Conversation store protocol and an in-memory implementation.

The store is the only boundary to persistence. It owns message ordering:
``insert_message`` assigns each message the next per-conversation ``seq``
and bumps the conversation's ``updated_at`` in the same write.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from dottie.chat.errors import ConversationNotFoundError, MessageNotFoundError
from dottie.chat.models import ConversationHistory, now_iso

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from dottie.chat.models import Conversation, Message

logger = logging.getLogger(__name__)

# Conversation fields that update_conversation may change
UPDATABLE_FIELDS = frozenset({"assessment_id", "assessment_pattern", "updated_at", "preview"})


@runtime_checkable
class ConversationStore(Protocol):
    """Async persistence interface used by the coordinator."""

    async def create_conversation(self, conversation: Conversation) -> Conversation: ...

    async def get_conversation(self, conversation_id: str) -> Conversation: ...

    async def is_owner(self, conversation_id: str, user_id: str) -> bool: ...

    async def insert_message(self, message: Message) -> Message: ...

    async def get_message(self, conversation_id: str, message_id: str) -> Message: ...

    async def get_conversation_history(self, conversation_id: str) -> ConversationHistory: ...

    async def update_message(
        self, conversation_id: str, message_id: str, *, content: str, edited_at: str
    ) -> Message: ...

    async def update_conversation(
        self, conversation_id: str, patch: Mapping[str, Any]
    ) -> Conversation: ...


def check_patch(patch: Mapping[str, Any]) -> None:
    """Reject conversation patches that touch read-only fields."""
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        msg = f"Cannot update conversation fields: {', '.join(sorted(unknown))}"
        raise ValueError(msg)


class InMemoryConversationStore:
    """Dict-backed store for tests and the ``--memory`` REPL.

    Returns copies so callers cannot mutate stored records. ``writes``
    records every mutating call as ``(operation, id)``.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}
        self.writes: list[tuple[str, str]] = []

    def _conversation(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise ConversationNotFoundError(conversation_id) from None

    def _message(self, conversation_id: str, message_id: str) -> Message:
        self._conversation(conversation_id)
        for message in self._messages[conversation_id]:
            if message.id == message_id:
                return message
        raise MessageNotFoundError(message_id)

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = replace(conversation)
        self._messages[conversation.id] = []
        self.writes.append(("create_conversation", conversation.id))
        return replace(conversation)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        return replace(self._conversation(conversation_id))

    async def is_owner(self, conversation_id: str, user_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        return conversation is not None and conversation.user_id == user_id

    async def insert_message(self, message: Message) -> Message:
        conversation = self._conversation(message.conversation_id)
        messages = self._messages[message.conversation_id]
        stored = replace(
            message,
            seq=max((m.seq for m in messages), default=0) + 1,
            metadata=dict(message.metadata),
        )
        messages.append(stored)
        conversation.updated_at = now_iso()
        self.writes.append(("insert_message", stored.id))
        return replace(stored)

    async def get_message(self, conversation_id: str, message_id: str) -> Message:
        return replace(self._message(conversation_id, message_id))

    async def get_conversation_history(self, conversation_id: str) -> ConversationHistory:
        conversation = self._conversation(conversation_id)
        ordered = sorted(self._messages[conversation_id], key=lambda m: m.sort_key)
        return ConversationHistory(
            conversation=replace(conversation),
            messages=[replace(m) for m in ordered],
        )

    async def update_message(
        self, conversation_id: str, message_id: str, *, content: str, edited_at: str
    ) -> Message:
        message = self._message(conversation_id, message_id)
        message.content = content
        message.edited_at = edited_at
        self._conversations[conversation_id].updated_at = now_iso()
        self.writes.append(("update_message", message_id))
        return replace(message)

    async def update_conversation(
        self, conversation_id: str, patch: Mapping[str, Any]
    ) -> Conversation:
        check_patch(patch)
        conversation = self._conversation(conversation_id)
        for key, value in patch.items():
            setattr(conversation, key, value)
        self.writes.append(("update_conversation", conversation_id))
        return replace(conversation)
