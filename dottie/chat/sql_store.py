"""SqlConversationStore — conversations and chat messages via libsql."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from dottie.chat.errors import (
    ChatError,
    ConversationNotFoundError,
    MessageNotFoundError,
    PersistenceError,
)
from dottie.chat.models import Conversation, ConversationHistory, Message, now_iso
from dottie.chat.store import check_patch
from dottie.db import unit_of_work

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping
    from pathlib import Path

    from dottie.db import AsyncConnection

logger = logging.getLogger(__name__)

_CREATE_CONVERSATIONS = """
CREATE TABLE IF NOT EXISTS conversations (
    id                 TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    assessment_id      TEXT,
    assessment_pattern TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    preview            TEXT
)
"""

_CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS chat_messages (
    id                TEXT PRIMARY KEY,
    conversation_id   TEXT NOT NULL REFERENCES conversations(id),
    seq               INTEGER NOT NULL,
    role              TEXT NOT NULL,
    content           TEXT NOT NULL,
    user_id           TEXT,
    parent_message_id TEXT,
    created_at        TEXT NOT NULL,
    edited_at         TEXT,
    metadata          TEXT,
    UNIQUE (conversation_id, seq)
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_chat_messages_order
    ON chat_messages (conversation_id, created_at, seq)
"""

_CONVERSATION_COLUMNS = (
    "id, user_id, assessment_id, assessment_pattern, created_at, updated_at, preview"
)
_MESSAGE_COLUMNS = (
    "id, conversation_id, seq, role, content, user_id, parent_message_id, "
    "created_at, edited_at, metadata"
)


class SqlConversationStore:
    """Persists conversations in SQLite / Turso.

    Pass an explicit *db_path* for test isolation (e.g.
    ``tmp_path / "chat.db"``). Driver errors are re-raised as
    ``PersistenceError``; not-found cases raise the matching chat error.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncConnection]:
        try:
            if not self._initialised:
                async with unit_of_work(self._db_path) as db:
                    await db.execute(_CREATE_CONVERSATIONS)
                    await db.execute(_CREATE_MESSAGES)
                    await db.execute(_CREATE_INDEX)
                self._initialised = True
            async with unit_of_work(self._db_path) as db:
                yield db
        except ChatError:
            raise
        except Exception as exc:
            logger.exception("Chat store %s failed", operation)
            msg = f"Chat store {operation} failed: {exc}"
            raise PersistenceError(msg) from exc

    @staticmethod
    async def _fetch_conversation(db: AsyncConnection, conversation_id: str) -> Conversation:
        row = await db.fetch_one(
            f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        if not row:
            raise ConversationNotFoundError(conversation_id)
        return Conversation.from_row(row)

    @staticmethod
    async def _fetch_message(db: AsyncConnection, conversation_id: str, message_id: str) -> Message:
        row = await db.fetch_one(
            f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages WHERE id = ? AND conversation_id = ?",
            (message_id, conversation_id),
        )
        if not row:
            raise MessageNotFoundError(message_id)
        return Message.from_row(row)

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        async with self._transaction("create_conversation") as db:
            await db.execute(
                f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                conversation.to_row(),
            )
        logger.info("Created conversation %s for user %s", conversation.id, conversation.user_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async with self._transaction("get_conversation") as db:
            return await self._fetch_conversation(db, conversation_id)

    async def is_owner(self, conversation_id: str, user_id: str) -> bool:
        async with self._transaction("is_owner") as db:
            row = await db.fetch_one(
                "SELECT 1 FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
        return row is not None

    async def update_conversation(
        self, conversation_id: str, patch: Mapping[str, Any]
    ) -> Conversation:
        check_patch(patch)
        async with self._transaction("update_conversation") as db:
            conversation = await self._fetch_conversation(db, conversation_id)
            if patch:
                # Column names come from UPDATABLE_FIELDS, never from user input
                assignments = ", ".join(f"{key} = ?" for key in patch)
                await db.execute(
                    f"UPDATE conversations SET {assignments} WHERE id = ?",
                    (*patch.values(), conversation_id),
                )
                for key, value in patch.items():
                    setattr(conversation, key, value)
            return conversation

    # -- Messages --------------------------------------------------------------

    async def insert_message(self, message: Message) -> Message:
        async with self._transaction("insert_message") as db:
            await self._fetch_conversation(db, message.conversation_id)
            # seq must be assigned by the INSERT itself, under the write lock
            row = message.to_row()
            await db.execute(
                f"INSERT INTO chat_messages ({_MESSAGE_COLUMNS}) "
                "SELECT ?, ?, COALESCE(MAX(seq), 0) + 1, ?, ?, ?, ?, ?, ?, ? "
                "FROM chat_messages WHERE conversation_id = ?",
                (*row[:2], *row[3:], message.conversation_id),
            )
            seq_row = await db.fetch_one(
                "SELECT seq FROM chat_messages WHERE id = ?", (message.id,)
            )
            message.seq = seq_row[0]
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now_iso(), message.conversation_id),
            )
        return message

    async def get_message(self, conversation_id: str, message_id: str) -> Message:
        async with self._transaction("get_message") as db:
            return await self._fetch_message(db, conversation_id, message_id)

    async def get_conversation_history(self, conversation_id: str) -> ConversationHistory:
        async with self._transaction("get_conversation_history") as db:
            conversation = await self._fetch_conversation(db, conversation_id)
            rows = await db.fetch_all(
                f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages "
                "WHERE conversation_id = ? ORDER BY created_at ASC, seq ASC",
                (conversation_id,),
            )
        return ConversationHistory(
            conversation=conversation,
            messages=[Message.from_row(row) for row in rows],
        )

    async def update_message(
        self, conversation_id: str, message_id: str, *, content: str, edited_at: str
    ) -> Message:
        async with self._transaction("update_message") as db:
            message = await self._fetch_message(db, conversation_id, message_id)
            await db.execute(
                "UPDATE chat_messages SET content = ?, edited_at = ? WHERE id = ?",
                (content, edited_at, message_id),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now_iso(), conversation_id),
            )
        message.content = content
        message.edited_at = edited_at
        return message
