"""ResponseCoordinator — turns user messages into persisted exchanges.

Every operation follows the same shape: coerce the conversation ID,
validate content, check ownership, then write. Nothing is written until
validation and ownership have passed.

Per exchange the state moves ``pending_user_write -> pending_reply ->
persisted``, or through ``failed_recovered`` when the AI backend failed
and the reply came from a fallback template. A user message sent with
auto-response enabled is never left unanswered unless the store itself
fails, in which case the error propagates.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dottie.chat.detector import detect_service
from dottie.chat.errors import (
    BatchSendError,
    ChatError,
    MessageNotFoundError,
    NotOwnerError,
    NoUserMessageError,
    PersistenceError,
    ValidationError,
)
from dottie.chat.formatter import (
    ValidationRules,
    format_assistant_message,
    format_user_message,
    validate_message_content,
)
from dottie.chat.generators import GenerationResult, ai, mock
from dottie.chat.models import (
    Conversation,
    EditResult,
    Exchange,
    ExchangeState,
    Message,
    ResponseOption,
    Role,
    ServiceMode,
    coerce_conversation_id,
    make_id,
    now_iso,
)
from dottie.chat.responses import build_summary_response
from dottie.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from dottie.chat.formatter import FormattedMessage
    from dottie.chat.models import ConversationHistory, ResponseEnvelope
    from dottie.chat.store import ConversationStore
    from dottie.config import Settings
    from dottie.llm.client import AiClient

logger = logging.getLogger(__name__)


def opening_message(assessment_pattern: str | None = None) -> str:
    """Default first user message for an auto-started conversation."""
    if assessment_pattern:
        return f"Hi! I'd like to discuss my {assessment_pattern} assessment results."
    return "Hi! I'd like to start a conversation."


@dataclass
class SendOptions:
    """Options for :meth:`ResponseCoordinator.send_message`.

    Attributes:
        auto_response: Generate and persist a reply after each user message.
        parent_message_id: Thread each sent user message under this message.
        batch_delay_ms: Pause between messages of a batch send.
        context: Extra values. ``assessment_pattern`` and ``assessment_id``
            are used when a new conversation has to be created.
    """

    auto_response: bool = True
    parent_message_id: str | None = None
    batch_delay_ms: int = 0
    context: dict[str, Any] = field(default_factory=dict)


class ResponseCoordinator:
    """Orchestrates reply generation and persistence for conversations.

    Args:
        store: Conversation store; the only persistence boundary.
        ai_client: Claude client. When None, replies come from the mock
            generators even if the detector reports AI mode.
        config: Settings override (defaults to the module settings).
    """

    def __init__(
        self,
        store: ConversationStore,
        ai_client: AiClient | None = None,
        *,
        config: Settings | None = None,
    ) -> None:
        self._store = store
        self._ai = ai_client
        self._config = config or settings
        self._rules = ValidationRules(
            max_length=self._config.message_max_length,
            blocked_patterns=list(self._config.blocked_patterns),
        )

    # -- Internal helpers ------------------------------------------------------

    def service_mode(self) -> ServiceMode:
        """Reply backend for the next generation call."""
        mode = detect_service(self._config)
        if mode is ServiceMode.AI and self._ai is None:
            logger.warning("AI mode selected but no AI client configured, using mock")
            return ServiceMode.MOCK
        return mode

    @asynccontextmanager
    async def _persisting(self, operation: str) -> AsyncIterator[None]:
        """Surface store failures as ``PersistenceError``."""
        try:
            yield
        except PersistenceError:
            logger.exception("Store failure during %s", operation)
            raise
        except ChatError:
            raise
        except Exception as exc:
            logger.exception("Store failure during %s", operation)
            msg = f"Store failure during {operation}: {exc}"
            raise PersistenceError(msg) from exc

    def _validate(self, content: object, user_id: str | None) -> FormattedMessage:
        result = validate_message_content(content, self._rules)
        if not result.is_valid:
            raise ValidationError(result.errors[0], result.errors)
        for warning in result.warnings:
            logger.info("Message validation warning: %s", warning)
        return format_user_message(
            content,  # type: ignore[arg-type]
            user_id,
            max_length=self._config.message_max_length,
        )

    async def _require_owner(self, conversation_id: str, user_id: str) -> None:
        async with self._persisting("ownership check"):
            owner = await self._store.is_owner(conversation_id, user_id)
        if not owner:
            logger.warning("Ownership check failed: user=%s conversation=%s", user_id, conversation_id)
            raise NotOwnerError(conversation_id, user_id)

    async def _history(self, conversation_id: str) -> ConversationHistory:
        async with self._persisting("history fetch"):
            return await self._store.get_conversation_history(conversation_id)

    @staticmethod
    def _find_user_message(history: ConversationHistory, message_id: str) -> Message:
        for message in history.messages:
            if message.id == message_id:
                if message.role is not Role.USER:
                    msg = f"Message {message_id} is not a user message"
                    raise ValidationError(msg)
                return message
        raise MessageNotFoundError(message_id)

    async def _generate(
        self,
        text: str,
        history: Sequence[Message],
        assessment_pattern: str | None,
    ) -> GenerationResult:
        """Run the generator for the current mode.

        The initial generator is used when *history* is empty, otherwise
        the follow-up generator.
        """
        mode = self.service_mode()
        initial = not history
        logger.info(
            "Generating %s reply via %s (history=%d)",
            "initial" if initial else "follow-up",
            mode.value,
            len(history),
        )
        if mode is ServiceMode.AI:
            if initial:
                return await ai.generate_initial_response(self._ai, text, assessment_pattern)
            return await ai.generate_follow_up_response(
                self._ai,
                text,
                history,
                assessment_pattern,
                history_window=self._config.follow_up_history_window,
            )
        if initial:
            envelope = await mock.generate_initial_response(text, assessment_pattern)
        else:
            envelope = await mock.generate_follow_up_response(text, history, assessment_pattern)
        return GenerationResult(envelope=envelope)

    def _preview(self, content: str) -> str:
        flat = " ".join(content.split())
        limit = self._config.preview_length
        return flat if len(flat) <= limit else flat[:limit].rstrip() + "..."

    async def _persist_reply(
        self,
        conversation_id: str,
        parent_message_id: str,
        envelope: ResponseEnvelope,
        extra: dict[str, Any] | None = None,
    ) -> Message:
        metadata = {
            **envelope.metadata,
            **(extra or {}),
            "envelope_id": envelope.id,
            "source": envelope.source.value,
            "type": envelope.type.value,
            "confidence": envelope.confidence,
        }
        formatted = format_assistant_message(envelope.content, metadata)
        reply = Message(
            id=make_id(),
            conversation_id=conversation_id,
            role=Role.ASSISTANT,
            content=formatted.content,
            parent_message_id=parent_message_id,
            metadata=formatted.metadata,
        )
        async with self._persisting("reply insert"):
            stored = await self._store.insert_message(reply)
        try:
            await self._store.update_conversation(
                conversation_id, {"preview": self._preview(stored.content)}
            )
        except Exception:
            # The reply is stored; a failed preview write only leaves it stale
            logger.exception("Preview update failed for %s", conversation_id)
        return stored

    async def _reply_to(
        self,
        conversation_id: str,
        history: ConversationHistory,
        target: Message,
        text: str,
    ) -> tuple[Message, bool]:
        """Generate and persist a reply to *target*.

        Context is the history strictly before *target*. Returns the stored
        reply and whether it came from the fallback path.
        """
        context = history.before(target.id)
        result = await self._generate(text, context, history.assessment_pattern)
        if not result.ok:
            logger.warning(
                "Recovered from generation failure in %s: %s", conversation_id, result.error
            )
        reply = await self._persist_reply(conversation_id, target.id, result.envelope)
        return reply, not result.ok

    async def _exchange(
        self,
        conversation_id: str,
        user_id: str,
        formatted: FormattedMessage,
        *,
        auto_response: bool = True,
        parent_message_id: str | None = None,
        assessment_pattern: str | None = None,
    ) -> Exchange:
        """Persist one user message and, optionally, its reply."""
        state = ExchangeState.PENDING_USER_WRITE
        history = await self._history(conversation_id)
        user_message = Message(
            id=make_id(),
            conversation_id=conversation_id,
            role=Role.USER,
            content=formatted.content,
            user_id=user_id,
            parent_message_id=parent_message_id,
        )
        async with self._persisting("user message insert"):
            user_message = await self._store.insert_message(user_message)

        if not auto_response:
            return Exchange(user_message=user_message, conversation_id=conversation_id)

        state = ExchangeState.PENDING_REPLY
        pattern = assessment_pattern or history.assessment_pattern
        result = await self._generate(user_message.content, history.messages, pattern)
        recovered = not result.ok
        if recovered:
            state = ExchangeState.FAILED_RECOVERED
            logger.warning(
                "Exchange in %s recovered with fallback reply: %s", conversation_id, result.error
            )
        logger.debug("Exchange state for %s: %s", user_message.id, state.value)
        reply = await self._persist_reply(conversation_id, user_message.id, result.envelope)
        return Exchange(
            user_message=user_message,
            assistant_message=reply,
            conversation_id=conversation_id,
            state=ExchangeState.PERSISTED,
            recovered=recovered,
        )

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(
        self,
        user_id: str,
        *,
        assessment_id: str | None = None,
        assessment_pattern: str | None = None,
    ) -> Conversation:
        """Create an empty conversation owned by *user_id*."""
        if not user_id:
            msg = "user_id is required"
            raise ValidationError(msg)
        conversation = Conversation(
            id=make_id(),
            user_id=user_id,
            assessment_id=assessment_id,
            assessment_pattern=assessment_pattern,
        )
        async with self._persisting("conversation create"):
            conversation = await self._store.create_conversation(conversation)
        logger.info("Conversation %s created for user %s", conversation.id, user_id)
        return conversation

    async def create_initial_message(
        self,
        conversation_id: object,
        user_id: str,
        message_text: str,
        assessment_pattern: str | None = None,
    ) -> Exchange:
        """Persist the first user message of a conversation and its reply.

        An *assessment_pattern* given here is stored on the conversation
        when it has none yet.
        """
        cid = coerce_conversation_id(conversation_id).value
        formatted = self._validate(message_text, user_id)
        await self._require_owner(cid, user_id)

        if assessment_pattern:
            async with self._persisting("conversation update"):
                conversation = await self._store.get_conversation(cid)
                if conversation.assessment_pattern != assessment_pattern:
                    await self._store.update_conversation(
                        cid, {"assessment_pattern": assessment_pattern}
                    )

        exchange = await self._exchange(
            cid, user_id, formatted, assessment_pattern=assessment_pattern
        )
        logger.info("Initial exchange persisted in %s (recovered=%s)", cid, exchange.recovered)
        return exchange

    async def auto_trigger_initial_conversation(
        self,
        conversation_id: object,
        user_id: str,
        assessment_pattern: str | None = None,
    ) -> Exchange:
        """Start a conversation with the default opening message."""
        return await self.create_initial_message(
            conversation_id, user_id, opening_message(assessment_pattern), assessment_pattern
        )

    async def get_conversation_summary(
        self, conversation_id: object, user_id: str
    ) -> ResponseEnvelope:
        """Summary envelope with message statistics for a conversation."""
        cid = coerce_conversation_id(conversation_id).value
        await self._require_owner(cid, user_id)
        history = await self._history(cid)
        messages = history.messages
        conversation = history.conversation
        summary = {
            "id": conversation.id,
            "user_id": conversation.user_id,
            "assessment_id": conversation.assessment_id,
            "assessment_pattern": conversation.assessment_pattern,
            "created_at": conversation.created_at,
            "updated_at": conversation.updated_at,
            "total_messages": len(messages),
            "user_messages": sum(1 for m in messages if m.role is Role.USER),
            "assistant_messages": sum(1 for m in messages if m.role is Role.ASSISTANT),
            "edited_messages": sum(1 for m in messages if m.edited_at),
            "first_message_at": messages[0].created_at if messages else None,
            "last_message_at": messages[-1].created_at if messages else None,
        }
        return build_summary_response(summary)

    # -- Replies ---------------------------------------------------------------

    async def generate_response_to_message(
        self,
        conversation_id: object,
        user_message_id: str,
        message_text: str | None = None,
        *,
        user_id: str | None = None,
    ) -> Message:
        """Generate and persist a reply to an existing user message.

        The reply is parented to *user_message_id*. When *message_text* is
        omitted the stored content of that message is used. Ownership is
        checked when *user_id* is given.
        """
        cid = coerce_conversation_id(conversation_id).value
        if user_id is not None:
            await self._require_owner(cid, user_id)
        history = await self._history(cid)
        target = self._find_user_message(history, user_message_id)
        reply, _ = await self._reply_to(cid, history, target, message_text or target.content)
        return reply

    async def auto_generate_response(
        self, conversation_id: object, *, user_id: str | None = None
    ) -> Message:
        """Reply to the most recent user message.

        Raises:
            NoUserMessageError: If the conversation has no user messages.
                Nothing is written in that case.
        """
        cid = coerce_conversation_id(conversation_id).value
        if user_id is not None:
            await self._require_owner(cid, user_id)
        history = await self._history(cid)
        latest = history.latest_user_message()
        if latest is None:
            msg = f"No user message to reply to in conversation {cid}"
            raise NoUserMessageError(msg)
        reply, _ = await self._reply_to(cid, history, latest, latest.content)
        return reply

    async def generate_response_options(
        self,
        conversation_id: object,
        user_message_id: str,
        message_text: str | None = None,
        count: int | None = None,
        *,
        user_id: str | None = None,
    ) -> list[ResponseOption]:
        """Generate *count* candidate replies without persisting any.

        Candidates are generated one after another against the same
        context, then ranked by confidence (highest first, stable).
        """
        count = self._config.response_options_count if count is None else count
        if count < 1:
            msg = "count must be at least 1"
            raise ValidationError(msg)
        cid = coerce_conversation_id(conversation_id).value
        if user_id is not None:
            await self._require_owner(cid, user_id)
        history = await self._history(cid)
        target = self._find_user_message(history, user_message_id)
        text = message_text or target.content
        context = history.before(target.id)

        envelopes = []
        for _ in range(count):
            result = await self._generate(text, context, history.assessment_pattern)
            envelopes.append(result.envelope)

        ranked = sorted(
            envelopes, key=lambda e: 1.0 if e.confidence is None else e.confidence, reverse=True
        )
        logger.info("Generated %d response options for %s", len(ranked), user_message_id)
        return [ResponseOption(rank=i + 1, envelope=e) for i, e in enumerate(ranked)]

    async def commit_response_option(
        self,
        conversation_id: object,
        user_id: str,
        user_message_id: str,
        option: ResponseOption,
    ) -> Message:
        """Persist a candidate chosen from :meth:`generate_response_options`."""
        cid = coerce_conversation_id(conversation_id).value
        await self._require_owner(cid, user_id)
        history = await self._history(cid)
        target = self._find_user_message(history, user_message_id)
        reply = await self._persist_reply(
            cid, target.id, option.envelope, {"option_rank": option.rank}
        )
        logger.info("Committed option %d as reply to %s", option.rank, target.id)
        return reply

    # -- Sending ---------------------------------------------------------------

    async def send_message(
        self,
        conversation_id: object | None,
        user_id: str,
        message: str | Sequence[str],
        options: SendOptions | None = None,
    ) -> Exchange | list[Exchange]:
        """Send one message, or a batch of messages in order.

        A single string returns one ``Exchange``; a list or tuple of strings
        returns a list. Anything else raises ``ValidationError``.
        A None *conversation_id* creates a new conversation first.

        Every text is validated before anything is written. Batch sends are
        not transactional: on failure, earlier exchanges stay persisted and
        are attached to the raised ``BatchSendError``.
        """
        options = options or SendOptions()
        batch = not isinstance(message, str)
        if batch and not isinstance(message, (list, tuple)):
            msg = f"Message must be a string or a list of strings, got {type(message).__name__}"
            raise ValidationError(msg)
        texts = list(message) if batch else [message]
        if not texts:
            msg = "No messages to send"
            raise ValidationError(msg)
        formatted = [self._validate(text, user_id) for text in texts]

        if conversation_id is None:
            conversation = await self.create_conversation(
                user_id,
                assessment_id=options.context.get("assessment_id"),
                assessment_pattern=options.context.get("assessment_pattern"),
            )
            cid = conversation.id
        else:
            cid = coerce_conversation_id(conversation_id).value
            await self._require_owner(cid, user_id)

        if options.parent_message_id:
            async with self._persisting("parent lookup"):
                await self._store.get_message(cid, options.parent_message_id)

        exchanges: list[Exchange] = []
        for index, item in enumerate(formatted):
            if index and options.batch_delay_ms > 0:
                await asyncio.sleep(options.batch_delay_ms / 1000)
            try:
                exchange = await self._exchange(
                    cid,
                    user_id,
                    item,
                    auto_response=options.auto_response,
                    parent_message_id=options.parent_message_id,
                )
            except ChatError as exc:
                if not batch:
                    raise
                logger.exception("Batch send failed at %d/%d in %s", index + 1, len(texts), cid)
                raise BatchSendError(index, len(texts), exchanges) from exc
            exchanges.append(exchange)

        if batch:
            logger.info("Batch of %d messages sent to %s", len(exchanges), cid)
            return exchanges
        return exchanges[0]

    # -- Editing ---------------------------------------------------------------

    async def edit_message(
        self,
        conversation_id: object,
        message_id: str,
        user_id: str,
        new_content: str,
    ) -> Message:
        """Replace the content of a user message.

        Only ``content`` and ``edited_at`` change; replies to the message
        and later messages are left untouched.
        """
        cid = coerce_conversation_id(conversation_id).value
        formatted = self._validate(new_content, user_id)
        await self._require_owner(cid, user_id)
        async with self._persisting("message lookup"):
            message = await self._store.get_message(cid, message_id)
        if message.role is not Role.USER:
            msg = "Only user messages can be edited"
            raise ValidationError(msg)
        async with self._persisting("message update"):
            updated = await self._store.update_message(
                cid, message_id, content=formatted.content, edited_at=now_iso()
            )
        logger.info("Edited message %s in %s", message_id, cid)
        return updated

    async def edit_message_with_regeneration(
        self,
        conversation_id: object,
        message_id: str,
        user_id: str,
        new_content: str,
        *,
        regenerate: bool = True,
    ) -> EditResult:
        """Edit a user message and append a fresh reply to it.

        Existing replies stay in place; the new reply is parented to the
        edited message, forking the thread.
        """
        updated = await self.edit_message(conversation_id, message_id, user_id, new_content)
        cid = updated.conversation_id
        new_response = None
        if regenerate:
            history = await self._history(cid)
            target = self._find_user_message(history, message_id)
            new_response, _ = await self._reply_to(cid, history, target, target.content)
        return EditResult(updated_message=updated, conversation_id=cid, new_response=new_response)
