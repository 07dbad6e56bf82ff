"""AI classification of feedback messages.

Classification is an enhancement: every failure path (no key, API error,
timeout, unparseable or off-schema reply) resolves to ``None`` and a log
line, never an exception.
"""

import json
import logging
import re

from openai import APIError
from pydantic import ValidationError

from feedback_api.models.feedback import (
    FEEDBACK_CATEGORIES,
    FEEDBACK_PRIORITIES,
    ClassificationResult,
)
from feedback_api.services.llm import generate, image_part, text_part

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/png"

CLASSIFICATION_PROMPT = (
    "Analyze this user feedback and classify it. The user is reporting "
    "feedback, a bug, a feature request, or a question. A screenshot may be "
    "attached.\n"
    "\n"
    'User message: "{message}"\n'
    "\n"
    "Extract:\n"
    "1. A concise title (5-8 words)\n"
    "2. A short summary (1-2 sentences)\n"
    "3. Key details as a list\n"
    "4. Category: {categories}\n"
    "5. Feature area: which part of the product (e.g. \"export\", "
    '"upload", "dashboard", "billing", "login")\n'
    "6. Priority: {priorities} (high = blocking/urgent, medium = "
    "important, low = nice to have)\n"
    "7. Steps to reproduce (if bug)\n"
    "8. Expected behavior (if bug)\n"
    "9. Confidence score (0.0-1.0)\n"
    "10. Clarifying questions (only if really needed, max 2)\n"
    "\n"
    "Return ONLY a single valid JSON object (no markdown, no explanation):\n"
    "{{\n"
    '  "title": "...",\n'
    '  "short_summary": "...",\n'
    '  "key_details": ["...", "..."],\n'
    '  "suggested_category": {category_choices},\n'
    '  "suggested_feature_area": "...",\n'
    '  "suggested_priority": {priority_choices},\n'
    '  "steps": ["...", "..."],\n'
    '  "expected": "..." or null,\n'
    '  "confidence": 0.0-1.0,\n'
    '  "clarifying_questions": ["...", "..."]\n'
    "}}"
)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")
_DATA_URL_RE = re.compile(r"^data:([^;,]+)(?:;[^,]*)?,")


class ClassificationError(Exception):
    """The model reply could not be turned into a valid classification."""

    pass


def build_prompt(message_text: str) -> str:
    def _choices(values: tuple[str, ...]) -> str:
        return "|".join(f'"{v}"' for v in values)

    return CLASSIFICATION_PROMPT.format(
        message=message_text,
        categories=", ".join(FEEDBACK_CATEGORIES),
        priorities=", ".join(FEEDBACK_PRIORITIES),
        category_choices=_choices(FEEDBACK_CATEGORIES),
        priority_choices=_choices(FEEDBACK_PRIORITIES),
    )


def to_data_url(image_base64: str) -> str:
    """Normalise a base64 image (bare or ``data:`` URL) into a data URL.

    A MIME type in an existing ``data:`` prefix is kept; bare payloads are
    labelled ``image/png``.
    """
    match = _DATA_URL_RE.match(image_base64)
    if match:
        mime = match.group(1)
        payload = image_base64[match.end():]
    else:
        mime = DEFAULT_IMAGE_MIME
        payload = image_base64
    return f"data:{mime};base64,{payload}"


def extract_json_text(raw_text: str) -> str:
    """Pull the JSON object out of a reply, tolerating markdown fences."""
    text = raw_text.strip()
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        return fenced.group(1)
    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            return text[start : end + 1]
    return text


def parse_classification(raw_text: str) -> ClassificationResult:
    """Unwrap, decode and validate a model reply.

    Raises:
        ClassificationError: On empty text, invalid JSON, a non-object
            payload, or any schema violation.
    """
    if not raw_text or not raw_text.strip():
        raise ClassificationError("Empty response from model")

    try:
        data = json.loads(extract_json_text(raw_text))
    except json.JSONDecodeError as e:
        raise ClassificationError(f"Invalid JSON response: {e}") from e

    if not isinstance(data, dict):
        raise ClassificationError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    try:
        return ClassificationResult.model_validate(data)
    except ValidationError as e:
        raise ClassificationError(
            f"Response failed schema validation: {e.error_count()} error(s)"
        ) from e


async def classify(
    message_text: str,
    screenshot_base64: str | None = None,
    api_key: str | None = None,
) -> ClassificationResult | None:
    """Classify a feedback message, optionally with a screenshot.

    Args:
        message_text: The visitor's feedback text.
        screenshot_base64: Base64 image, bare or as a ``data:`` URL.
        api_key: Model provider credential; classification is skipped
            when it is empty.

    Returns:
        A fully valid ``ClassificationResult``, or None on any failure.
    """
    if not api_key:
        logger.warning("No AI API key configured, skipping classification")
        return None

    parts = [text_part(build_prompt(message_text))]
    if screenshot_base64:
        parts.append(image_part(to_data_url(screenshot_base64)))

    try:
        raw_text = await generate(parts, api_key=api_key)
        return parse_classification(raw_text)
    except ClassificationError as e:
        logger.warning("Discarding AI classification: %s", e)
        return None
    except APIError as e:
        logger.error("AI classification API error: %s", e)
        return None
    except Exception:
        logger.exception("Unexpected error during AI classification")
        return None
