"""Feedback ingestion pipeline — rate limit, honeypot, validate, classify, store, notify."""

import base64
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from feedback_api.config import get_settings
from feedback_api.middleware import request_id_var
from feedback_api.models.feedback import ClassificationResult, FeedbackRecord
from feedback_api.services.blob_storage import insert_feedback, upload_screenshot
from feedback_api.services.bot_filter import is_likely_bot
from feedback_api.services.classifier import classify
from feedback_api.services.notifications import FeedbackNotification, get_dispatcher
from feedback_api.services.rate_limit import client_identity, get_rate_limiter
from feedback_api.services.validation import SubmissionError, validate_submission

logger = logging.getLogger(__name__)

# Identity returned for honeypot hits, shaped like a real success
HONEYPOT_ID = "fake-id"


@dataclass
class RawSubmission:
    """An inbound submission as the transport received it.

    ``headers`` keys are lower-case.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    message: str | None = None
    website: str | None = None
    project: str | None = None
    screenshot: bytes | None = None
    screenshot_content_type: str | None = None
    peer: str | None = None


@dataclass
class Accepted:
    id: str
    classification: ClassificationResult | None = None
    honeypot: bool = False


@dataclass
class RateLimited:
    reason: str = "too many requests"


@dataclass
class RejectedInvalid:
    reason: str


@dataclass
class InternalFailure:
    reason: str = "internal error"


IngestResponse = Accepted | RateLimited | RejectedInvalid | InternalFailure

# Reads the submission body; raises SubmissionError when it cannot be read
FormLoader = Callable[[], Awaitable[RawSubmission]]


def _log_prefix() -> str:
    rid = request_id_var.get()
    return f"[{rid}] " if rid else ""


def encode_screenshot(data: bytes, content_type: str) -> str:
    """In-memory data URL of a screenshot, for the classification call only."""
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


async def handle_submission(raw: RawSubmission) -> IngestResponse:
    """Run an already-read submission through the pipeline."""

    async def loaded() -> RawSubmission:
        return raw

    return await handle_request(raw.headers, raw.peer, loaded)


async def handle_request(
    headers: Mapping[str, str], peer: str | None, load_form: FormLoader
) -> IngestResponse:
    """Run one request through the pipeline.

    The rate limiter sees the request before ``load_form`` touches the body,
    so malformed bodies spend budget like any other submission.

    Only an invalid submission, a rate-limit rejection, or a failed record
    insert is reported to the caller. Honeypot hits look like success, and
    screenshot upload, AI, and notification failures are absorbed.
    """
    try:
        return await _ingest(headers, peer, load_form)
    except Exception:
        logger.exception("%sUnexpected error ingesting feedback", _log_prefix())
        return InternalFailure()


async def _ingest(
    headers: Mapping[str, str], peer: str | None, load_form: FormLoader
) -> IngestResponse:
    settings = get_settings()
    prefix = _log_prefix()

    # 1. Rate limit
    identity = client_identity(headers, peer)
    if not get_rate_limiter().admit(identity):
        logger.warning("%sRate limited feedback from %s", prefix, identity)
        return RateLimited()

    try:
        raw = await load_form()
    except SubmissionError as e:
        logger.info("%sUnreadable feedback from %s: %s", prefix, identity, e.reason)
        return RejectedInvalid(reason=e.reason)

    # 2. Honeypot (silent discard)
    if is_likely_bot(raw.website):
        logger.warning("%sHoneypot triggered from %s", prefix, identity)
        return Accepted(id=HONEYPOT_ID, honeypot=True)

    # 3. Validate
    try:
        submission = validate_submission(
            message=raw.message,
            screenshot=raw.screenshot,
            screenshot_content_type=raw.screenshot_content_type,
            website=raw.website,
            project=raw.project,
            headers=headers,
            client_identity=identity,
            max_screenshot_bytes=settings.max_screenshot_bytes,
        )
    except SubmissionError as e:
        logger.info("%sRejected feedback from %s: %s", prefix, identity, e.reason)
        return RejectedInvalid(reason=e.reason)

    # 4. Screenshot: best-effort upload, plus an in-memory copy for the AI
    screenshot_url: str | None = None
    screenshot_data_url: str | None = None
    if submission.screenshot:
        content_type = submission.screenshot_content_type or "image/png"
        try:
            screenshot_url = await upload_screenshot(submission.screenshot, content_type)
        except Exception as e:
            logger.warning(
                "%sScreenshot upload failed, storing feedback without it: %s",
                prefix,
                e,
            )
        screenshot_data_url = encode_screenshot(submission.screenshot, content_type)

    # 5. AI classification (None on any failure)
    ai_data = await classify(
        submission.message,
        screenshot_base64=screenshot_data_url,
        api_key=settings.ai_api_key,
    )

    # 6. Persist — the only fatal step
    record = FeedbackRecord(
        page_url=submission.page_url,
        user_agent=submission.user_agent,
        project_id=submission.project_id,
        message_raw=submission.message,
        screenshot_url=screenshot_url,
        ai_data=ai_data,
    )
    try:
        feedback_id = await insert_feedback(record)
    except Exception as e:
        logger.error("%sFailed to save feedback from %s: %s", prefix, identity, e)
        return InternalFailure(reason="failed to save")

    # 7. Notify (fire-and-forget)
    try:
        get_dispatcher().dispatch(
            FeedbackNotification(
                feedback_id=feedback_id,
                message_raw=submission.message,
                page_url=submission.page_url,
                ai_data=ai_data,
            )
        )
    except Exception:
        logger.exception("%sCould not schedule notification for %s", prefix, feedback_id)

    logger.info(
        "%sStored feedback %s from %s (category=%s)",
        prefix,
        feedback_id,
        identity,
        ai_data.suggested_category if ai_data else "unclassified",
    )
    return Accepted(id=feedback_id, classification=ai_data)
