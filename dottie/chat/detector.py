"""Decide whether replies come from the AI backend or the mock generator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dottie.chat.models import ServiceMode
from dottie.config import settings
from dottie.llm.models import resolve_model

if TYPE_CHECKING:
    from dottie.config import Settings

logger = logging.getLogger(__name__)


def detect_service(config: Settings | None = None) -> ServiceMode:
    """Return the reply backend for the current configuration.

    A ``CHAT_SERVICE_MODE`` of ``ai`` or ``mock`` pins the mode. Otherwise
    the AI backend is used only when an Anthropic key is configured. Reads
    settings only, so it is cheap enough to call for every message.
    """
    config = config or settings
    forced = config.get_forced_service_mode()
    if forced:
        return ServiceMode(forced)
    if config.anthropic_api_key:
        return ServiceMode.AI
    return ServiceMode.MOCK


def service_status(config: Settings | None = None) -> dict[str, Any]:
    """Describe the active reply backend (for health output and the REPL)."""
    config = config or settings
    mode = detect_service(config)
    return {
        "current_service": mode.value,
        "ai_configured": bool(config.anthropic_api_key),
        "is_forced": config.get_forced_service_mode() is not None,
        "forced_mode": config.get_forced_service_mode(),
        "model": resolve_model(config.chat_model) if mode is ServiceMode.AI else None,
    }
