"""Tests for the fire-and-forget Slack notifier."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from vetdesk.core.exceptions import ExternalServiceError
from vetdesk.services.slack_notifier import (
    SlackNotifier,
    build_appointment_message,
    is_appointment_booked,
    post_to_slack,
)
from vetdesk.tasks.notification_tasks import post_slack_message


BOOKED = {
    "appointment_booked": True,
    "appointment_data": {
        "client_name": "Jordan Miles",
        "patient_name": "Bella",
        "date": "2026-03-02",
        "time": "10:30",
        "reason": "Recheck",
    },
}


class TestBookingDetection:

    def test_explicit_flag(self):
        assert is_appointment_booked({"appointment_booked": True})

    def test_appointment_data_with_date(self):
        assert is_appointment_booked({"appointment_data": {"date": "2026-03-02"}})

    @pytest.mark.parametrize("data", [
        None,
        {},
        {"appointment_booked": False},
        {"appointment_booked": "yes"},
        {"appointment_data": {"time": "10:30"}},
        ["not", "a", "dict"],
    ])
    def test_not_booked(self, data):
        assert not is_appointment_booked(data)


class TestMessage:

    def test_block_kit_payload(self):
        payload = build_appointment_message("Happy Paws", "+12137774445", BOOKED, call_id="call-1")

        assert payload["text"] == "New appointment booked for Bella (Jordan Miles) at 2026-03-02 10:30"
        assert payload["blocks"][0]["text"]["text"] == "New appointment booked - Happy Paws"
        fields = [f["text"] for f in payload["blocks"][1]["fields"]]
        assert "*Phone:*\n(213) 777-4445" in fields
        assert any("Recheck" in b.get("text", {}).get("text", "") for b in payload["blocks"][2:])
        assert "call-1" in payload["blocks"][-1]["elements"][0]["text"]

    def test_fallbacks(self):
        payload = build_appointment_message(None, None, {"appointment_booked": True})
        assert payload["blocks"][0]["text"]["text"] == "New appointment booked - Clinic"
        fields = [f["text"] for f in payload["blocks"][1]["fields"]]
        assert "*Phone:*\nN/A" in fields
        assert "*When:*\ntime not captured" in fields


class TestNotifier:

    @patch("vetdesk.tasks.notification_tasks.post_slack_message")
    def test_disabled_notifier_does_not_queue(self, mock_task):
        notifier = SlackNotifier(enabled=False)
        assert notifier.notify_appointment_booked("Happy Paws", None, BOOKED) is False
        mock_task.delay.assert_not_called()

    @patch("vetdesk.tasks.notification_tasks.post_slack_message")
    def test_queues_payload(self, mock_task):
        notifier = SlackNotifier(enabled=True)
        assert notifier.notify_appointment_booked("Happy Paws", "+12137774445", BOOKED, "call-1") is True

        payload = mock_task.delay.call_args.args[0]
        assert payload["blocks"][0]["type"] == "header"

    @patch("vetdesk.tasks.notification_tasks.post_slack_message")
    def test_broker_failure_is_swallowed(self, mock_task):
        mock_task.delay.side_effect = ConnectionError("broker down")
        notifier = SlackNotifier(enabled=True)
        assert notifier.notify_appointment_booked("Happy Paws", None, BOOKED) is False


class TestPostToSlack:

    def test_missing_webhook_url(self):
        assert post_to_slack({"text": "hi"}, webhook_url="") == {
            "success": False,
            "error": "Slack webhook URL not configured",
        }

    @patch("vetdesk.services.slack_notifier.httpx.Client")
    def test_success(self, mock_client_cls):
        client = MagicMock()
        client.post.return_value = MagicMock(status_code=200)
        mock_client_cls.return_value.__enter__.return_value = client

        assert post_to_slack({"text": "hi"}, webhook_url="https://hooks.slack.com/x") == {"success": True}
        client.post.assert_called_once_with("https://hooks.slack.com/x", json={"text": "hi"})

    @patch("vetdesk.services.slack_notifier.httpx.Client")
    def test_http_error_status(self, mock_client_cls):
        client = MagicMock()
        client.post.return_value = MagicMock(status_code=500, text="boom")
        mock_client_cls.return_value.__enter__.return_value = client

        result = post_to_slack({"text": "hi"}, webhook_url="https://hooks.slack.com/x")
        assert result == {"success": False, "error": "HTTP 500"}

    @patch("vetdesk.services.slack_notifier.httpx.Client")
    def test_timeout(self, mock_client_cls):
        client = MagicMock()
        client.post.side_effect = httpx.ReadTimeout("slow")
        mock_client_cls.return_value.__enter__.return_value = client

        result = post_to_slack({"text": "hi"}, webhook_url="https://hooks.slack.com/x")
        assert result == {"success": False, "error": "Request timed out"}


class TestPostSlackMessageTask:

    @patch("vetdesk.tasks.notification_tasks.post_to_slack")
    def test_success(self, mock_post):
        mock_post.return_value = {"success": True}
        assert post_slack_message({"text": "hi"}) == {"success": True}

    @patch("vetdesk.tasks.notification_tasks.post_to_slack")
    def test_missing_url_is_not_retried(self, mock_post):
        mock_post.return_value = {"success": False, "error": "Slack webhook URL not configured"}
        assert post_slack_message({"text": "hi"})["success"] is False

    @patch("vetdesk.tasks.notification_tasks.post_to_slack")
    def test_transport_failure_raises_for_retry(self, mock_post):
        mock_post.return_value = {"success": False, "error": "HTTP 500"}
        with pytest.raises(ExternalServiceError):
            post_slack_message({"text": "hi"})
