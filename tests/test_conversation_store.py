"""Tests for the in-memory conversation store."""

import pytest

from dottie.chat.errors import ConversationNotFoundError, MessageNotFoundError
from dottie.chat.models import Conversation, Message, Role
from dottie.chat.store import ConversationStore, InMemoryConversationStore


def _message(id_: str, conversation_id: str = "c1", role: str = "user", **kw) -> Message:
    return Message(id=id_, conversation_id=conversation_id, role=role, content=f"text {id_}", **kw)


@pytest.fixture
async def seeded(store: InMemoryConversationStore) -> InMemoryConversationStore:
    await store.create_conversation(Conversation(id="c1", user_id="u1", assessment_pattern="regular"))
    return store


def test_satisfies_protocol(store: InMemoryConversationStore) -> None:
    assert isinstance(store, ConversationStore)


async def test_is_owner(seeded: InMemoryConversationStore) -> None:
    assert await seeded.is_owner("c1", "u1")
    assert not await seeded.is_owner("c1", "someone-else")
    assert not await seeded.is_owner("missing", "u1")


async def test_insert_assigns_seq_and_bumps_updated_at(seeded: InMemoryConversationStore) -> None:
    before = (await seeded.get_conversation("c1")).updated_at
    first = await seeded.insert_message(_message("m1"))
    second = await seeded.insert_message(_message("m2", role="assistant"))
    assert (first.seq, second.seq) == (1, 2)
    assert (await seeded.get_conversation("c1")).updated_at >= before


async def test_history_orders_by_created_at_then_seq(seeded: InMemoryConversationStore) -> None:
    await seeded.insert_message(_message("late", created_at="2024-01-02T00:00:00"))
    await seeded.insert_message(_message("tie-a", created_at="2024-01-01T00:00:00"))
    await seeded.insert_message(_message("tie-b", role="assistant", created_at="2024-01-01T00:00:00"))

    history = await seeded.get_conversation_history("c1")
    assert [m.id for m in history.messages] == ["tie-a", "tie-b", "late"]
    assert history.assessment_pattern == "regular"


async def test_returned_records_are_copies(seeded: InMemoryConversationStore) -> None:
    await seeded.insert_message(_message("m1"))
    fetched = await seeded.get_message("c1", "m1")
    fetched.content = "tampered"
    assert (await seeded.get_message("c1", "m1")).content == "text m1"


async def test_update_message_changes_content_and_edited_at(seeded: InMemoryConversationStore) -> None:
    await seeded.insert_message(_message("m1"))
    updated = await seeded.update_message("c1", "m1", content="new", edited_at="t-edit")
    assert updated.content == "new"
    assert updated.edited_at == "t-edit"
    assert updated.role is Role.USER
    assert updated.seq == 1


async def test_update_conversation(seeded: InMemoryConversationStore) -> None:
    updated = await seeded.update_conversation("c1", {"preview": "hello"})
    assert updated.preview == "hello"
    assert (await seeded.get_conversation("c1")).preview == "hello"


async def test_update_conversation_rejects_read_only_fields(seeded: InMemoryConversationStore) -> None:
    with pytest.raises(ValueError, match="user_id"):
        await seeded.update_conversation("c1", {"user_id": "thief"})


async def test_not_found_errors(seeded: InMemoryConversationStore) -> None:
    with pytest.raises(ConversationNotFoundError):
        await seeded.get_conversation_history("missing")
    with pytest.raises(ConversationNotFoundError):
        await seeded.insert_message(_message("m1", conversation_id="missing"))
    with pytest.raises(MessageNotFoundError):
        await seeded.get_message("c1", "missing")


async def test_writes_are_recorded(seeded: InMemoryConversationStore) -> None:
    await seeded.insert_message(_message("m1"))
    await seeded.get_conversation_history("c1")
    assert seeded.writes == [("create_conversation", "c1"), ("insert_message", "m1")]
