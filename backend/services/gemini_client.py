"""Google Gemini API wrapper with error handling."""

import json
import logging
from typing import Any, NamedTuple

from google import genai
from google.genai import types

from config import settings

logger = logging.getLogger(__name__)

_client: genai.Client | None = None


class GeminiReply(NamedTuple):
    text: str
    tokens_used: int


class GeminiJSONReply(NamedTuple):
    data: dict[str, Any]
    tokens_used: int


def get_client() -> genai.Client | None:
    global _client
    if not settings.gemini_api_key:
        logger.warning("No GEMINI_API_KEY set - Gemini features disabled")
        return None
    if _client is None:
        _client = genai.Client(api_key=settings.gemini_api_key)
    return _client


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


async def generate_text(
    prompt: str,
    model: str,
    temperature: float = 0.3,
    max_output_tokens: int = 4096,
) -> GeminiReply | None:
    """Send a prompt to Gemini and return the raw reply text with token usage."""
    client = get_client()
    if client is None:
        return None

    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            ),
        )
    except Exception as e:
        logger.error("Gemini API error (%s): %s", model, e)
        return None

    usage = response.usage_metadata
    tokens = (usage.total_token_count or 0) if usage is not None else 0
    return GeminiReply(text=(response.text or "").strip(), tokens_used=tokens)


async def generate_json(
    prompt: str,
    model: str,
    temperature: float = 0.3,
    max_output_tokens: int = 4096,
) -> GeminiJSONReply | None:
    """Send a prompt to Gemini and parse the JSON response."""
    reply = await generate_text(prompt, model, temperature, max_output_tokens)
    if reply is None:
        return None

    try:
        data = json.loads(strip_code_fences(reply.text))
    except json.JSONDecodeError as e:
        logger.error("Failed to parse Gemini response as JSON: %s", e)
        return None
    if not isinstance(data, dict):
        logger.error("Gemini JSON response is not an object")
        return None
    return GeminiJSONReply(data=data, tokens_used=reply.tokens_used)
