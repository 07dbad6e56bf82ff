"""Submission validation and passthrough metadata extraction."""

from collections.abc import Mapping

from feedback_api.models.feedback import Submission

DEFAULT_SCREENSHOT_TYPE = "image/png"
ALLOWED_SCREENSHOT_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/gif", "image/webp"}
)


class SubmissionError(Exception):
    """A submission the caller must fix before resubmitting."""

    reason = "invalid submission"


class MalformedSubmission(SubmissionError):
    """The request body could not be read as a feedback form."""


class MissingMessage(SubmissionError):
    reason = "message required"


class PayloadTooLarge(SubmissionError):
    reason = "screenshot too large"


def _screenshot_type(declared: str | None) -> str:
    if declared:
        mime = declared.split(";")[0].strip().lower()
        if mime in ALLOWED_SCREENSHOT_TYPES:
            return mime
    return DEFAULT_SCREENSHOT_TYPE


def validate_submission(
    *,
    message: str | None,
    screenshot: bytes | None,
    screenshot_content_type: str | None,
    website: str | None,
    project: str | None,
    headers: Mapping[str, str],
    client_identity: str,
    max_screenshot_bytes: int,
) -> Submission:
    """Check required fields and sizes, returning a ``Submission``.

    Raises:
        MissingMessage: ``message`` is absent or whitespace only.
        PayloadTooLarge: the screenshot exceeds ``max_screenshot_bytes``.
    """
    if not message or not message.strip():
        raise MissingMessage()

    # An empty file part means no screenshot was attached
    if not screenshot:
        screenshot = None
    elif len(screenshot) > max_screenshot_bytes:
        raise PayloadTooLarge()

    return Submission(
        message=message,
        screenshot=screenshot,
        screenshot_content_type=(
            _screenshot_type(screenshot_content_type) if screenshot else None
        ),
        website=website or "",
        project_id=(project or "").strip() or None,
        page_url=headers.get("x-page-url") or headers.get("referer") or "unknown",
        client_identity=client_identity,
        user_agent=headers.get("user-agent") or None,
    )
