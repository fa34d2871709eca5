"""Conversational response coordination — generators, persistence and orchestration."""

from dottie.chat.coordinator import ResponseCoordinator, SendOptions
from dottie.chat.detector import detect_service, service_status
from dottie.chat.models import (
    Conversation,
    ConversationId,
    Exchange,
    Message,
    ResponseEnvelope,
    coerce_conversation_id,
)
from dottie.chat.sql_store import SqlConversationStore
from dottie.chat.store import ConversationStore, InMemoryConversationStore

__all__ = [
    "Conversation",
    "ConversationId",
    "ConversationStore",
    "Exchange",
    "InMemoryConversationStore",
    "Message",
    "ResponseCoordinator",
    "ResponseEnvelope",
    "SendOptions",
    "SqlConversationStore",
    "coerce_conversation_id",
    "detect_service",
    "service_status",
]
