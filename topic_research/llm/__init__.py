"""Text-generation integrations with protocol-based adapter pattern."""

from .protocols import LLMProvider, Message, MessageRole
from .adapters import AnthropicAdapter, OpenRouterAdapter
from .structured import (
    SchemaError,
    StructuredOk,
    StructuredResult,
    decode_structured,
    extract_json,
    generate,
    generate_structured,
)

__all__ = [
    # Protocols
    "LLMProvider",
    "Message",
    "MessageRole",
    # Adapters
    "AnthropicAdapter",
    "OpenRouterAdapter",
    # Generation helpers
    "SchemaError",
    "StructuredOk",
    "StructuredResult",
    "decode_structured",
    "extract_json",
    "generate",
    "generate_structured",
]
