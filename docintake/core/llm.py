"""LLM client utilities for the Anthropic SDK."""

import json
import re
from typing import TypeVar

import anthropic
from anthropic import AsyncAnthropic
from pydantic import BaseModel

from docintake.core.config import Settings
from docintake.core.errors import AnalysisUnavailableError

T = TypeVar("T", bound=BaseModel)

UNAVAILABLE_MESSAGES: dict[str, str] = {
    "quota": "⚠️ AI unavailable: API quota exceeded.",
    "auth": "⚠️ AI unavailable: API key is invalid.",
    "config": "⚠️ AI unavailable: API key not configured.",
    "timeout": "⚠️ AI unavailable: the request timed out.",
    "invalid_output": "⚠️ AI unavailable: the response could not be understood.",
    "unavailable": "⚠️ AI temporarily unavailable.",
}


def get_async_client(settings: Settings) -> AsyncAnthropic:
    """
    Build an Anthropic client from settings.

    Raises:
        AnalysisUnavailableError: If no API key is configured
    """
    if not settings.ANTHROPIC_API_KEY:
        raise AnalysisUnavailableError("config", UNAVAILABLE_MESSAGES["config"])
    return AsyncAnthropic(
        api_key=settings.ANTHROPIC_API_KEY,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
    )


def classify_llm_error(error: Exception) -> AnalysisUnavailableError:
    """Map an SDK exception onto a labeled AnalysisUnavailableError."""
    if isinstance(error, AnalysisUnavailableError):
        return error
    if isinstance(error, anthropic.RateLimitError):
        reason = "quota"
    elif isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        reason = "auth"
    elif isinstance(error, anthropic.APITimeoutError):
        reason = "timeout"
    elif isinstance(error, (json.JSONDecodeError, ValueError)):
        reason = "invalid_output"
    else:
        reason = "unavailable"
    return AnalysisUnavailableError(reason, UNAVAILABLE_MESSAGES[reason])


def response_text(response) -> str:
    """Concatenate text blocks from a Messages API response."""
    return "".join(
        getattr(block, "text", "") for block in (response.content or []) if getattr(block, "type", "text") == "text"
    )


_FENCED_BLOCK = re.compile(r"```[a-zA-Z]*[ \t]*\n?(.*?)\n?```", re.DOTALL)


def _unwrap_json(raw_output: str) -> str:
    """Return the JSON payload of a model reply, dropping any code fence around it."""
    text = raw_output.strip()
    block = _FENCED_BLOCK.search(text)
    if block:
        return block.group(1).strip()
    # Unterminated fence from a truncated reply
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text.lstrip("`")
    return text.rstrip("`").strip()


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Decode a model reply and validate it as ``model``.

    Raises:
        json.JSONDecodeError: reply is not JSON once unwrapped
        pydantic.ValidationError: JSON does not fit ``model``
    """
    return model.model_validate(json.loads(_unwrap_json(raw_output)))


def parse_llm_json_dict(raw_output: str):
    """Decode a model reply into plain JSON data (object or array)."""
    return json.loads(_unwrap_json(raw_output))
