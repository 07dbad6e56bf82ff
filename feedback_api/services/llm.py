"""Generative-AI backend via an OpenAI-compatible chat completions API.

The default endpoint is Google's OpenAI-compatible Gemini API, but any
provider speaking the same protocol works.

Usage:
    from feedback_api.services.llm import generate, image_part, text_part

    text = await generate([text_part("Classify: ..."), image_part(url)], api_key)
"""

import logging
from typing import Any

from openai import AsyncOpenAI

from feedback_api.config import get_settings

logger = logging.getLogger(__name__)


def text_part(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def image_part(data_url: str) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": data_url}}


def _get_client(api_key: str) -> AsyncOpenAI:
    """Create an async OpenAI client with a bounded timeout and no retries."""
    settings = get_settings()
    return AsyncOpenAI(
        base_url=settings.ai_openai_endpoint,
        api_key=api_key,
        timeout=settings.ai_timeout_seconds,
        max_retries=0,
    )


async def generate(
    parts: list[dict[str, Any]],
    api_key: str,
    model: str | None = None,
    max_tokens: int = 1000,
    temperature: float = 0.2,
) -> str:
    """Send one multimodal user message and return the reply text.

    Args:
        parts: Content parts (see ``text_part`` / ``image_part``).
        api_key: Provider credential.
        model: Override the configured model name.
        max_tokens: Maximum response tokens.
        temperature: Sampling temperature.

    Returns:
        The assistant's response text (empty string if the model sent none).

    Raises:
        openai.APIError: On API, connection, and timeout errors.
    """
    settings = get_settings()

    async with _get_client(api_key) as client:
        response = await client.chat.completions.create(
            model=model or settings.ai_model,
            messages=[{"role": "user", "content": parts}],
            max_tokens=max_tokens,
            temperature=temperature,
        )

    return response.choices[0].message.content or ""
