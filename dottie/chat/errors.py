"""Exception taxonomy for the chat engine.

Validation and ownership errors are raised before any write. Generation
errors are compensated locally and only travel inside a
``GenerationResult``. Persistence errors always reach the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dottie.chat.models import Exchange


class ChatError(Exception):
    """Base class for every error raised by the chat engine."""


class ValidationError(ChatError):
    """Message content was empty, oversized or blocked."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class InvalidIdFormatError(ValidationError):
    """A conversation ID could not be coerced into a ``ConversationId``."""


class NotOwnerError(ChatError):
    """The caller does not own the conversation."""

    def __init__(self, conversation_id: str, user_id: str) -> None:
        super().__init__(f"User {user_id} does not own conversation {conversation_id}")
        self.conversation_id = conversation_id
        self.user_id = user_id


class NoUserMessageError(ChatError):
    """There is no user message to reply to."""


class GenerationError(ChatError):
    """The AI backend call failed, timed out or returned nothing usable."""


class PersistenceError(ChatError):
    """The conversation store failed to read or write."""


class ConversationNotFoundError(ChatError):
    """No conversation exists with the given ID."""


class MessageNotFoundError(ChatError):
    """No message with the given ID exists in the conversation."""


class BatchSendError(ChatError):
    """A batch send stopped partway through.

    Batch sends are not transactional: ``completed`` holds the exchanges
    that were persisted before the failure, and ``__cause__`` is the
    original error.
    """

    def __init__(self, failed_index: int, total: int, completed: list[Exchange]) -> None:
        super().__init__(f"Batch send failed at message {failed_index + 1} of {total}")
        self.failed_index = failed_index
        self.total = total
        self.completed = completed
