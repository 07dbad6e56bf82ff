"""Feedback submission endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from feedback_api.config import get_settings
from feedback_api.models.feedback import ErrorResponse, FeedbackResponse
from feedback_api.services.ingestion import (
    Accepted,
    RateLimited,
    RawSubmission,
    RejectedInvalid,
    handle_request,
)
from feedback_api.services.validation import MalformedSubmission

router = APIRouter(prefix="/feedback", tags=["feedback"])

# The widget sends message, website, project and one screenshot
MAX_FORM_FIELDS = 16
MAX_FORM_FILES = 1


def _error(status_code: int, reason: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(error=reason).model_dump()
    )


def _text_field(form: FormData, name: str) -> str | None:
    value = form.get(name)
    if value is None or isinstance(value, str):
        return value
    raise MalformedSubmission()


async def _read_form(request: Request) -> RawSubmission:
    """Parse the multipart body into a ``RawSubmission``.

    Raises:
        MalformedSubmission: the body is not a readable form, or a field
            has the wrong shape (e.g. a text value where the screenshot
            file belongs).
    """
    # Read at most one byte past the cap; the validator rejects anything longer
    limit = get_settings().max_screenshot_bytes
    try:
        async with request.form(
            max_files=MAX_FORM_FILES, max_fields=MAX_FORM_FIELDS
        ) as form:
            screenshot = form.get("screenshot")
            if isinstance(screenshot, UploadFile):
                screenshot_bytes = await screenshot.read(limit + 1)
                content_type = screenshot.content_type
            elif screenshot:
                raise MalformedSubmission()
            else:
                screenshot_bytes = None
                content_type = None

            return RawSubmission(
                headers=dict(request.headers),
                message=_text_field(form, "message"),
                website=_text_field(form, "website"),
                project=_text_field(form, "project"),
                screenshot=screenshot_bytes,
                screenshot_content_type=content_type,
                peer=request.client.host if request.client else None,
            )
    except (HTTPException, MultiPartException) as e:
        # Multipart parse failures and field/file limit breaches
        raise MalformedSubmission() from e


@router.post(
    "",
    response_model=FeedbackResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def submit_feedback(request: Request):
    """Submit feedback. AI-classified and stored for triage.

    Accepts ``multipart/form-data`` with ``message``, optional ``website``
    and ``project`` text fields, and an optional ``screenshot`` file. The
    body is parsed here rather than by FastAPI so the rate limiter runs
    before any of it is read.
    """
    result = await handle_request(
        dict(request.headers),
        request.client.host if request.client else None,
        lambda: _read_form(request),
    )

    if isinstance(result, Accepted):
        return FeedbackResponse(
            id=result.id,
            ai_data=result.classification,
            message="Feedback sent" if result.honeypot else "Feedback received",
        )
    if isinstance(result, RateLimited):
        return _error(429, result.reason)
    if isinstance(result, RejectedInvalid):
        return _error(400, result.reason)
    return _error(500, result.reason)
