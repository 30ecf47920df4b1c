"""LLM integration components."""

from src.llm.backend import (
    LiteLLMBackend,
    ModelBackend,
    ModelResponse,
    convert_messages,
    parse_response,
)

__all__ = [
    "LiteLLMBackend",
    "ModelBackend",
    "ModelResponse",
    "convert_messages",
    "parse_response",
]
