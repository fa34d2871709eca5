"""System prompt assembly for the chat assistant."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"

DEFAULT_PERSONA = (
    "You are Dottie, a warm and knowledgeable assistant in a menstrual-health "
    "tracking app. Explain cycle and symptom patterns in plain language, keep "
    "replies short, and ask a follow-up question when it helps. You are not a "
    "clinician: do not diagnose, and suggest seeing a healthcare provider for "
    "severe, unusual or worrying symptoms."
)

_INITIAL_GUIDANCE = (
    "# This conversation\n\n"
    "This is the start of a new conversation. Welcome the user, respond to what "
    "they said, and invite them to share more about their cycle or symptoms."
)

_FOLLOW_UP_GUIDANCE = (
    "# This conversation\n\n"
    "You are continuing an ongoing conversation. Stay consistent with what you "
    "said earlier, build on previous exchanges instead of repeating them, and "
    "answer the user's latest message directly."
)


def _read_config(filename: str) -> str:
    """Read a config markdown file, returning empty string if missing."""
    path = CONFIG_DIR / filename
    if path.exists():
        return path.read_text(encoding="utf-8")
    return ""


def _assessment_section(assessment_pattern: str, *, follow_up: bool) -> str:
    if follow_up:
        body = (
            f"This conversation is about the user's assessment result: "
            f"**{assessment_pattern}**. Keep relating your answers back to that "
            "pattern where it is relevant."
        )
    else:
        body = (
            f"The user has just completed a cycle assessment and their result is "
            f"**{assessment_pattern}**. They may want to understand what it means "
            "and what they can do about it."
        )
    return f"# Assessment\n\n{body}"


def build_system_prompt(assessment_pattern: str | None = None, *, follow_up: bool = False) -> str:
    """Assemble the system prompt for one generation call.

    Sections are the persona (``config/PERSONA.md`` when present, else a
    built-in default), stage guidance for initial vs follow-up replies, and
    the user's assessment pattern when known.
    """
    persona = _read_config("PERSONA.md").strip()
    if not persona:
        logger.debug("PERSONA.md not found, using built-in persona")
        persona = DEFAULT_PERSONA

    sections = [persona, _FOLLOW_UP_GUIDANCE if follow_up else _INITIAL_GUIDANCE]
    if assessment_pattern:
        sections.append(_assessment_section(assessment_pattern, follow_up=follow_up))
    return "\n\n---\n\n".join(sections)
