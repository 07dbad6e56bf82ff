"""Feedback submission, classification and record models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, get_args

from pydantic import BaseModel, Field

FeedbackCategory = Literal["bug", "feature", "question", "billing", "praise", "other"]
FeedbackPriority = Literal["low", "medium", "high"]

FEEDBACK_CATEGORIES: tuple[str, ...] = get_args(FeedbackCategory)
FEEDBACK_PRIORITIES: tuple[str, ...] = get_args(FeedbackPriority)


class FeedbackStatus(str, Enum):
    """Triage lifecycle of a stored feedback record."""

    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Submission(BaseModel):
    """A validated feedback submission, alive for one request."""

    message: str
    screenshot: bytes | None = None
    screenshot_content_type: str | None = None
    website: str = ""  # Honeypot — bots fill this, humans don't
    project_id: str | None = None
    page_url: str = "unknown"
    client_identity: str = "unknown"
    user_agent: str | None = None


class ClassificationResult(BaseModel):
    """AI classification of a feedback message.

    Field names double as the JSON keys the model is asked to produce and
    the keys stored under ``ai_data``.
    """

    title: str = Field(..., min_length=1)
    short_summary: str = Field(..., min_length=1)
    key_details: list[str]
    suggested_category: FeedbackCategory
    suggested_feature_area: str = Field(..., min_length=1)
    suggested_priority: FeedbackPriority
    steps: list[str] = []
    expected: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    clarifying_questions: list[str] = []


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedbackRecord(BaseModel):
    """The persisted unit: one per accepted submission."""

    id: str | None = None  # assigned by storage on insert
    page_url: str
    user_agent: str | None = None
    project_id: str | None = None
    message_raw: str
    screenshot_url: str | None = None
    ai_data: ClassificationResult | None = None
    status: FeedbackStatus = FeedbackStatus.NEW
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class FeedbackResponse(BaseModel):
    """Response after feedback submission."""

    id: str
    ai_data: ClassificationResult | None = None
    message: str = "Feedback received"


class ErrorResponse(BaseModel):
    """Error body; ``error`` is one of a closed set of reason strings."""

    error: str
