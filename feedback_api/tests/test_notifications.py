"""Tests for notification emails and the background dispatcher."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from feedback_api.models.feedback import ClassificationResult
from feedback_api.services.notifications import (
    RESEND_API_URL,
    FeedbackNotification,
    NotificationDispatcher,
    build_email,
    send_notification_email,
)


def _notification(ai_data=None, message="Line one\nLine <two>"):
    return FeedbackNotification(
        feedback_id="rec-1",
        message_raw=message,
        page_url="https://app.example.com/reports",
        ai_data=ai_data,
    )


def _ai(priority="high", category="bug"):
    return ClassificationResult(
        title="Export broken",
        short_summary="Export does nothing.",
        key_details=[],
        suggested_category=category,
        suggested_feature_area="export",
        suggested_priority=priority,
        confidence=0.8,
    )


class TestBuildEmail:
    @pytest.mark.parametrize(
        ("priority", "marker"), [("high", "🔴"), ("medium", "🟡"), ("low", "🟢")]
    )
    def test_subject_marks_priority(self, priority, marker):
        email = build_email(_notification(ai_data=_ai(priority=priority)))
        assert email["subject"] == f"{marker} New Feedback: bug"

    def test_unclassified_defaults(self):
        email = build_email(_notification())
        assert email["subject"] == "🟡 New Feedback: unknown"
        assert "<strong>Priority:</strong> medium" in email["html"]

    def test_message_is_escaped_with_line_breaks(self):
        email = build_email(_notification())
        assert "Line one<br>Line &lt;two&gt;" in email["html"]
        assert "https://app.example.com/reports" in email["html"]


class TestSendNotificationEmail:
    async def test_skipped_when_not_configured(self, mock_settings, mocker):
        mock_client = mocker.patch(
            "feedback_api.services.notifications.get_shared_client"
        )
        await send_notification_email(_notification())
        mock_client.assert_not_called()

    async def test_posts_to_resend(self, mock_settings, mocker):
        mock_settings.resend_api_key = "re_test"
        mock_settings.feedback_notify_email = "team@example.com"
        client = MagicMock()
        client.post = AsyncMock(
            return_value=httpx.Response(
                200, json={"id": "email-1"}, request=httpx.Request("POST", RESEND_API_URL)
            )
        )
        mocker.patch(
            "feedback_api.services.notifications.get_shared_client",
            return_value=client,
        )

        await send_notification_email(_notification(ai_data=_ai()))

        url = client.post.call_args.args[0]
        kwargs = client.post.call_args.kwargs
        assert url == RESEND_API_URL
        assert kwargs["headers"]["Authorization"] == "Bearer re_test"
        assert kwargs["json"]["to"] == ["team@example.com"]
        assert kwargs["json"]["from"] == mock_settings.resend_from_email
        assert kwargs["json"]["subject"] == "🔴 New Feedback: bug"

    async def test_http_error_raises(self, mock_settings, mocker):
        mock_settings.resend_api_key = "re_test"
        mock_settings.feedback_notify_email = "team@example.com"
        client = MagicMock()
        client.post = AsyncMock(
            return_value=httpx.Response(
                422, json={"message": "bad"}, request=httpx.Request("POST", RESEND_API_URL)
            )
        )
        mocker.patch(
            "feedback_api.services.notifications.get_shared_client",
            return_value=client,
        )

        with pytest.raises(httpx.HTTPStatusError):
            await send_notification_email(_notification())


class TestNotificationDispatcher:
    async def test_dispatch_does_not_wait(self, mocker):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(notification):
            started.set()
            await release.wait()

        mocker.patch(
            "feedback_api.services.notifications.send_notification_email",
            side_effect=slow_send,
        )
        dispatcher = NotificationDispatcher()

        dispatcher.dispatch(_notification())
        assert dispatcher.pending == 1

        await started.wait()
        release.set()
        await dispatcher.drain(timeout=1)
        await asyncio.sleep(0)
        assert dispatcher.pending == 0

    async def test_failure_is_logged_not_raised(self, mocker, caplog):
        mocker.patch(
            "feedback_api.services.notifications.send_notification_email",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("refused"),
        )
        dispatcher = NotificationDispatcher()

        dispatcher.dispatch(_notification())
        await dispatcher.drain(timeout=1)
        await asyncio.sleep(0)

        assert dispatcher.pending == 0
        assert "Failed to send notification" in caplog.text

    async def test_drain_cancels_stragglers(self, mocker, caplog):
        async def hang(notification):
            await asyncio.Event().wait()

        mocker.patch(
            "feedback_api.services.notifications.send_notification_email",
            side_effect=hang,
        )
        dispatcher = NotificationDispatcher()

        dispatcher.dispatch(_notification())
        await dispatcher.drain(timeout=0.01)
        await asyncio.sleep(0)

        assert dispatcher.pending == 0
        assert "still pending at shutdown" in caplog.text

    async def test_drain_with_nothing_pending(self):
        await NotificationDispatcher().drain(timeout=0.01)
