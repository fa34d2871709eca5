"""Reply generators: Claude-backed and deterministic mock, initial and follow-up."""

from dottie.chat.generators import ai, mock
from dottie.chat.generators.ai import GenerationResult

__all__ = ["GenerationResult", "ai", "mock"]
