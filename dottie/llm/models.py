"""Claude model name resolution."""

import logging

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "haiku"

MODEL_MAP: dict[str, str] = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-1-20250805",
}

# Reverse lookup: full model string → friendly name
FRIENDLY_NAMES: dict[str, str] = {v: k for k, v in MODEL_MAP.items()}


def _resolve(name_or_id: str) -> str | None:
    """Resolve a friendly name or full model ID. Returns full ID or None."""
    key = name_or_id.strip().lower()
    if key in MODEL_MAP:
        return MODEL_MAP[key]
    if name_or_id in FRIENDLY_NAMES:
        return name_or_id
    return None


def resolve_model(name_or_id: str) -> str:
    """Return the full model ID for *name_or_id*.

    Unknown ``claude-*`` IDs pass through untouched so newer models can be
    configured without a code change. Anything else falls back to the
    default model.
    """
    model_id = _resolve(name_or_id)
    if model_id:
        return model_id
    if name_or_id.startswith("claude-"):
        return name_or_id
    logger.warning("Unknown chat model %r, using %s", name_or_id, DEFAULT_MODEL)
    return MODEL_MAP[DEFAULT_MODEL]


def friendly(model_id: str) -> str:
    """Return the friendly name for a model ID, or the ID itself."""
    return FRIENDLY_NAMES.get(model_id, model_id)
