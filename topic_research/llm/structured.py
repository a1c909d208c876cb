"""Text generation helpers with strict schema decoding.

``generate_structured`` never raises on malformed output; it returns a tagged
result so callers take their deterministic fallback path explicitly:

    result = await generate_structured(llm, prompt, PlanDraft)
    if isinstance(result, SchemaError):
        return fallback()
    draft = result.value
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from ..settings import LLM_TIMEOUT_SECONDS
from .protocols import LLMProvider

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

JSON_SYSTEM_PROMPT = (
    "You are a research assistant. Respond with a single valid JSON object "
    "and nothing else."
)


@dataclass(frozen=True)
class StructuredOk(Generic[T]):
    """Successfully decoded output."""

    value: T


@dataclass(frozen=True)
class SchemaError:
    """Generated output that could not be decoded into the schema."""

    message: str
    raw: str = ""


StructuredResult = StructuredOk[T] | SchemaError


def extract_json(text: str) -> str:
    """Return the outermost ``{...}`` span of a response.

    Raises:
        ValueError: If no JSON object is present
    """
    json_start = text.find("{")
    json_end = text.rfind("}") + 1
    if json_start == -1 or json_end <= json_start:
        raise ValueError("no JSON object found in response")
    return text[json_start:json_end]


def decode_structured(text: str, schema: type[T]) -> StructuredResult:
    """Strictly decode generated text into ``schema``."""
    try:
        data = json.loads(extract_json(text))
    except ValueError as e:
        return SchemaError(f"Invalid JSON: {e}", raw=text)

    try:
        return StructuredOk(schema.model_validate(data))
    except ValidationError as e:
        return SchemaError(
            f"{schema.__name__} validation failed: {e.error_count()} error(s)", raw=text
        )


async def generate(
    provider: LLMProvider,
    prompt: str,
    temperature: float = 0.7,
    system_prompt: str | None = None,
    max_tokens: int | None = None,
    timeout: float | None = LLM_TIMEOUT_SECONDS,
) -> str:
    """
    Generate free text, bounded by a timeout.

    Raises:
        asyncio.TimeoutError: If the provider does not answer in time
        Exception: Whatever the provider raises
    """
    return await asyncio.wait_for(
        provider.complete(prompt, system_prompt, temperature, max_tokens),
        timeout=timeout,
    )


async def generate_structured(
    provider: LLMProvider,
    prompt: str,
    schema: type[T],
    temperature: float = 0.3,
    max_tokens: int | None = None,
    timeout: float | None = LLM_TIMEOUT_SECONDS,
) -> StructuredResult:
    """
    Generate output and decode it into ``schema``.

    Provider failures (unavailable, timeout) are reported as SchemaError too,
    since every caller reacts to both the same way.

    Returns:
        StructuredOk with the decoded model, or SchemaError
    """
    try:
        text = await generate(
            provider,
            prompt,
            temperature=temperature,
            system_prompt=JSON_SYSTEM_PROMPT,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Generation timed out after {timeout}s ({schema.__name__})")
        return SchemaError("generation timed out")
    except Exception as e:
        logger.warning(f"Generation failed ({schema.__name__}): {e}")
        return SchemaError(f"generation failed: {e}")

    result = decode_structured(text, schema)
    if isinstance(result, SchemaError):
        logger.warning(f"Structured decode failed: {result.message}")
    return result

