"""
Unit tests for SlackWebhookClient.

Tests the staff alert client with mocked HTTP requests.
"""

import json
from unittest.mock import Mock

import requests

from src.notifications.slack_service import SlackWebhookClient

WEBHOOK = "https://hooks.slack.com/services/T000/B000/XXXXXXXXXXXXXXXX"


def response(status_code, headers=None, text=""):
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.headers = headers or {}
    mock_response.text = text
    return mock_response


class TestSlackWebhookClient:
    """Test suite for SlackWebhookClient."""

    def test_send_staff_alert_payload(self):
        session = Mock()
        session.post.return_value = response(200)
        client = SlackWebhookClient(webhook_url=WEBHOOK, http_client=session)

        assert client.send_staff_alert("Session cancel requested", "*details*") is True

        args, kwargs = session.post.call_args
        assert args[0] == WEBHOOK
        payload = json.loads(kwargs["data"])
        assert payload["text"] == "Session cancel requested"
        assert payload["blocks"][0]["text"] == {"type": "mrkdwn", "text": "*details*"}

    def test_without_webhook_nothing_is_sent(self):
        session = Mock()
        client = SlackWebhookClient(webhook_url=None, http_client=session)

        assert client.send_staff_alert("title", "text") is False
        session.post.assert_not_called()

    def test_retries_after_server_error(self):
        session = Mock()
        session.post.side_effect = [response(500, text="oops"), response(200)]
        client = SlackWebhookClient(
            webhook_url=WEBHOOK, http_client=session, retry_delay_seconds=0
        )

        assert client.send_staff_alert("title", "text") is True
        assert session.post.call_count == 2

    def test_rate_limited_until_exhausted(self):
        session = Mock()
        session.post.return_value = response(429, headers={"Retry-After": "1"})
        client = SlackWebhookClient(
            webhook_url=WEBHOOK, http_client=session, max_retries=2, retry_delay_seconds=0
        )

        assert client.send_staff_alert("title", "text") is False
        assert session.post.call_count == 2

    def test_network_error_returns_false(self):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("down")
        client = SlackWebhookClient(
            webhook_url=WEBHOOK, http_client=session, retry_delay_seconds=0
        )

        assert client.send_staff_alert("title", "text") is False
        assert session.post.call_count == 3
