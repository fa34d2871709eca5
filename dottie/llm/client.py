"""Async Claude API client used by the AI reply generators."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import anthropic

from dottie.chat.errors import GenerationError
from dottie.llm.models import friendly, resolve_model

if TYPE_CHECKING:
    from dottie.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Text returned by the model plus usage details."""

    content: str
    model: str
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    response_time_ms: int = 0

    @property
    def tokens_used(self) -> int:
        return sum(self.usage.values())


def _normalise_turns(history: list[dict[str, str]]) -> list[dict[str, str]]:
    """Shape history for the Messages API.

    Drops ``system`` turns and any leading assistant turns, and merges
    consecutive turns from the same role.
    """
    turns: list[dict[str, str]] = []
    for turn in history:
        role = turn.get("role")
        content = turn.get("content", "")
        if role not in ("user", "assistant") or not content:
            continue
        if not turns and role != "user":
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1] = {"role": role, "content": f"{turns[-1]['content']}\n\n{content}"}
        else:
            turns.append({"role": role, "content": content})
    return turns


class AiClient:
    """Thin wrapper around ``anthropic.AsyncAnthropic``.

    Constructed once and passed into the generators; there is no
    module-level client.

    Args:
        client: The Anthropic SDK client.
        model: Friendly name (``haiku``) or full model ID.
        max_tokens: Reply length cap.
        timeout: Seconds before a call is abandoned.
    """

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        *,
        model: str,
        max_tokens: int = 1024,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self.model = resolve_model(model)
        self.max_tokens = max_tokens
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: Settings) -> AiClient | None:
        """Build a client from settings, or None when no API key is set."""
        if not config.anthropic_api_key:
            return None
        client = anthropic.AsyncAnthropic(api_key=config.anthropic_api_key)
        ai = cls(
            client,
            model=config.chat_model,
            max_tokens=config.ai_max_tokens,
            timeout=config.ai_timeout_seconds,
        )
        logger.info("AI client ready: model=%s", friendly(ai.model))
        return ai

    async def complete(self, system_prompt: str, history: list[dict[str, str]]) -> Completion:
        """Single-shot completion over *history*.

        Raises:
            GenerationError: On API errors, timeouts, or an empty reply.
        """
        messages = _normalise_turns(history)
        if not messages:
            msg = "No user turn to complete"
            raise GenerationError(msg)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**kwargs), timeout=self.timeout
            )
        except TimeoutError as exc:
            msg = f"Claude call timed out after {self.timeout:.0f}s"
            raise GenerationError(msg) from exc
        except anthropic.APIError as exc:
            msg = f"Claude API error: {exc}"
            raise GenerationError(msg) from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)

        text = "".join(
            getattr(block, "text", "") for block in response.content if block.type == "text"
        ).strip()
        if not text:
            msg = "Claude returned no text content"
            raise GenerationError(msg)

        usage = {}
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
        return Completion(
            content=text,
            model=getattr(response, "model", None) or self.model,
            stop_reason=response.stop_reason,
            usage=usage,
            response_time_ms=elapsed_ms,
        )
