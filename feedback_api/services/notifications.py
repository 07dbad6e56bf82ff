"""New-feedback email notifications, sent fire-and-forget.

Emails go out through the Resend HTTP API. Sending is skipped unless both
an API key and a recipient are configured.
"""

import asyncio
import html
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from feedback_api.config import get_settings
from feedback_api.models.feedback import ClassificationResult
from feedback_api.services.http_client import get_shared_client

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_PRIORITY_MARKERS = {"high": "🔴", "medium": "🟡", "low": "🟢"}


@dataclass
class FeedbackNotification:
    """Summary fields of a stored submission, for the notification email."""

    feedback_id: str
    message_raw: str
    page_url: str
    ai_data: ClassificationResult | None = None

    @property
    def category(self) -> str:
        return self.ai_data.suggested_category if self.ai_data else "unknown"

    @property
    def priority(self) -> str:
        return self.ai_data.suggested_priority if self.ai_data else "medium"


def build_email(notification: FeedbackNotification) -> dict[str, str]:
    """Render subject and HTML body for a notification."""
    marker = _PRIORITY_MARKERS.get(notification.priority, "🟡")
    message_html = html.escape(notification.message_raw).replace("\n", "<br>")
    body = (
        "<h2>New Feedback Received</h2>"
        f"<p><strong>Category:</strong> {html.escape(notification.category)}</p>"
        f"<p><strong>Priority:</strong> {html.escape(notification.priority)}</p>"
        f"<p><strong>Page:</strong> {html.escape(notification.page_url)}</p>"
        "<hr>"
        "<p><strong>Message:</strong></p>"
        f"<blockquote>{message_html}</blockquote>"
    )
    return {
        "subject": f"{marker} New Feedback: {notification.category}",
        "html": body,
    }


async def send_notification_email(notification: FeedbackNotification) -> None:
    """Send the notification email.

    Raises:
        httpx.HTTPError: On transport errors or a non-2xx response.
    """
    settings = get_settings()
    if not settings.resend_api_key or not settings.feedback_notify_email:
        logger.debug("Email notifications not configured, skipping")
        return

    email = build_email(notification)
    client = get_shared_client()
    resp = await client.post(
        RESEND_API_URL,
        headers={"Authorization": f"Bearer {settings.resend_api_key}"},
        json={
            "from": settings.resend_from_email,
            "to": [settings.feedback_notify_email],
            "subject": email["subject"],
            "html": email["html"],
        },
    )
    resp.raise_for_status()
    logger.info("Sent notification for feedback %s", notification.feedback_id)


class NotificationDispatcher:
    """Runs notification sends as background tasks.

    ``dispatch`` returns immediately. Tasks are held until they finish so
    they are not garbage collected mid-flight, and ``drain`` lets shutdown
    wait for stragglers instead of dropping them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def dispatch(self, notification: FeedbackNotification) -> None:
        self._spawn(send_notification_email(notification), notification.feedback_id)

    def _spawn(self, coro: Coroutine[Any, Any, None], feedback_id: str) -> None:
        task = asyncio.create_task(coro, name=f"notify-{feedback_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Notification task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Failed to send notification (%s): %s", task.get_name(), exc
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait up to ``timeout`` seconds for in-flight sends, then cancel the rest."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("Waiting for %d pending notification(s)", len(tasks))
        _done, still_pending = await asyncio.wait(tasks, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning(
                "Dropped %d notification(s) still pending at shutdown",
                len(still_pending),
            )
            await asyncio.gather(*still_pending, return_exceptions=True)


# Lazy singleton — lives for the process lifetime
_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
