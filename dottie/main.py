"""Dottie chat developer REPL."""

import argparse
import asyncio
import logging
from collections.abc import Callable

from dottie.chat.coordinator import ResponseCoordinator
from dottie.chat.detector import service_status
from dottie.chat.errors import ValidationError
from dottie.chat.models import Message, Role
from dottie.chat.sql_store import SqlConversationStore
from dottie.chat.store import InMemoryConversationStore
from dottie.config import settings
from dottie.llm.client import AiClient

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /summary        show conversation statistics
  /status         show which reply backend is active
  /edit TEXT      replace your last message and regenerate the reply
  /options        show alternative replies to your last message
  /quit           exit"""


def _reply_line(message: Message | None) -> str:
    if message is None:
        return "dottie> (no reply)"
    source = message.metadata.get("source", "?")
    return f"dottie [{source}]> {message.content}"


def _last_user_message(messages: list[Message]) -> Message | None:
    users = [m for m in messages if m.role is Role.USER]
    return users[-1] if users else None


async def run_repl(
    coordinator: ResponseCoordinator,
    user_id: str,
    assessment_pattern: str | None = None,
    *,
    read: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> str:
    """Run the interactive loop until ``/quit`` or EOF. Returns the conversation ID."""
    conversation = await coordinator.create_conversation(
        user_id, assessment_pattern=assessment_pattern
    )
    cid = conversation.id
    sent: list[Message] = []
    write(f"Conversation {cid} (mode: {coordinator.service_mode().value}). /help for commands.")

    while True:
        try:
            line = (await asyncio.to_thread(read, "you> ")).strip()
        except EOFError:
            break
        if not line:
            continue
        if line == "/quit":
            break
        if line == "/help":
            write(HELP_TEXT)
            continue
        if line == "/status":
            write(str(service_status()))
            continue
        if line == "/summary":
            envelope = await coordinator.get_conversation_summary(cid, user_id)
            write(envelope.content)
            continue

        last = _last_user_message(sent)
        if line == "/options" or line.startswith("/edit"):
            if last is None:
                write("Nothing to work with yet. Send a message first.")
                continue
            if line == "/options":
                for option in await coordinator.generate_response_options(cid, last.id):
                    write(f"[{option.rank}] ({option.envelope.source.value}) {option.envelope.content}")
                continue
            try:
                result = await coordinator.edit_message_with_regeneration(
                    cid, last.id, user_id, line.removeprefix("/edit").strip()
                )
            except ValidationError as exc:
                write(f"error: {exc}")
                continue
            write(_reply_line(result.new_response))
            continue

        try:
            if not sent:
                exchange = await coordinator.create_initial_message(
                    cid, user_id, line, assessment_pattern
                )
            else:
                exchange = await coordinator.send_message(cid, user_id, line)
        except ValidationError as exc:
            write(f"error: {exc}")
            continue
        sent.append(exchange.user_message)
        write(_reply_line(exchange.assistant_message))

    return cid


def main() -> None:
    """Start a chat session on the terminal."""
    parser = argparse.ArgumentParser(description="Chat with Dottie from the terminal.")
    parser.add_argument("--memory", action="store_true", help="use an in-memory store")
    parser.add_argument("--pattern", default=None, help="assessment pattern for context")
    parser.add_argument("--user", default="dev-user", help="user ID to chat as")
    args = parser.parse_args()

    store = InMemoryConversationStore() if args.memory else SqlConversationStore()
    coordinator = ResponseCoordinator(store, AiClient.from_settings(settings))
    logger.info("Starting Dottie REPL as %s (%s store)", args.user, "memory" if args.memory else "sql")
    asyncio.run(run_repl(coordinator, args.user, args.pattern))


if __name__ == "__main__":
    main()
