"""
End-to-end smoke tests for Lambda handler orchestration.

Runs the daily reminder sweep through lambda_handler with services wired by
build_services over moto DynamoDB and SES.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import boto3
import pytest
from moto import mock_aws

import src.main
from src.api.handlers import api_handler
from src.config.settings import Settings
from src.database.tables import create_tables
from src.domain.session import TrainingSession
from src.main import build_services, lambda_handler, reset_services
from src.utils.clock import FixedClock, format_timestamp

NOW = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


class MockContext:
    """Mock Lambda context for testing."""

    def __init__(self):
        self.function_name = "gym-reminder-sweep-test"
        self.aws_request_id = "test-request-id"
        self.invoked_function_arn = "arn:aws:lambda:test:test"


@pytest.fixture(autouse=True)
def clean_services():
    reset_services()
    yield
    reset_services()


@pytest.fixture
def services(monkeypatch):
    """Full service bundle with live (mocked) SES delivery."""
    monkeypatch.setenv("EMAIL_DELIVERY_ENABLED", "true")
    with mock_aws():
        settings = Settings(region_name="us-east-1")
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        ses = boto3.client("ses", region_name="us-east-1")
        ses.verify_email_identity(EmailAddress=settings.email_sender)
        tables = settings.table_names()
        create_tables(dynamodb, tables)

        dynamodb.Table(tables["users"]).put_item(
            Item={"user_id": "member-1", "role": "member", "first_name": "Aisha", "email": "aisha@example.com"}
        )
        dynamodb.Table(tables["users"]).put_item(
            Item={"user_id": "trainer-1", "role": "trainer", "first_name": "Omar"}
        )
        dynamodb.Table(tables["memberships"]).put_item(
            Item={
                "membership_id": "m-1",
                "member_id": "member-1",
                "end_date": format_timestamp(NOW + timedelta(days=3)),
                "status": "active",
            }
        )

        bundle = build_services(
            settings, dynamodb_resource=dynamodb, ses_client=ses, clock=FixedClock(NOW)
        )
        bundle.sessions.create_session(
            TrainingSession(
                session_id="s-1",
                member_id="member-1",
                trainer_id="trainer-1",
                start_time=NOW + timedelta(hours=20),
            )
        )
        yield bundle, ses


class TestLambdaHandler:
    def test_sweep_success(self, services):
        bundle, ses = services

        with patch("src.main.get_services", return_value=bundle):
            response = lambda_handler({}, MockContext())

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["message"] == "Reminder sweep completed"
        assert body["sent"] == 2
        assert body["failed"] == 0

        sweeps = {sweep["name"]: sweep for sweep in body["sweeps"]}
        assert sweeps["membership_expiring"]["sent"] == 1
        assert sweeps["session_reminders"]["sent"] == 1
        assert ses.get_send_quota()["SentLast24Hours"] == 2
        assert bundle.sessions.get_session("s-1").reminder_sent_24h is True

    def test_second_run_sends_nothing_new(self, services):
        bundle, _ = services

        with patch("src.main.get_services", return_value=bundle):
            lambda_handler({}, MockContext())
            response = lambda_handler({}, None)

        body = json.loads(response["body"])
        assert body["sent"] == 0
        assert body["skipped"] >= 1

    def test_wiring_failure_returns_500(self):
        with patch("src.main.get_services", side_effect=ValueError("Reminder configuration invalid")), \
             patch("src.main.notify_slack_error") as mock_notify:
            response = lambda_handler({}, MockContext())

        assert response["statusCode"] == 500
        body = json.loads(response["body"])
        assert body["error_type"] == "ValueError"
        assert "Reminder configuration invalid" in body["message"]
        mock_notify.assert_called_once()

    def test_get_services_caches_bundle(self):
        bundle = Mock()
        with patch("src.main.build_services", return_value=bundle) as mock_build, \
             patch("src.main.setup_logging_redaction"):
            assert src.main.get_services() is bundle
            assert src.main.get_services() is bundle
        mock_build.assert_called_once()

    def test_ledger_uses_configured_gym_offset(self, monkeypatch):
        monkeypatch.setenv("GYM_UTC_OFFSET_HOURS", "3")
        with mock_aws():
            bundle = build_services(
                Settings(region_name="us-east-1"),
                dynamodb_resource=boto3.resource("dynamodb", region_name="us-east-1"),
                ses_client=boto3.client("ses", region_name="us-east-1"),
            )
        assert bundle.ledgers.gym_timezone == timezone(timedelta(hours=3))
        assert bundle.engine.gym_timezone == bundle.ledgers.gym_timezone


class TestApiHandler:
    def test_create_via_api_gateway_event(self, services):
        bundle, _ = services
        event = {
            "body": json.dumps(
                {
                    "operation": "create_session",
                    "caller_id": "trainer-1",
                    "params": {"member_id": "member-1", "start_time": "2026-10-20T09:00:00+04:00"},
                }
            )
        }

        with patch("src.main.get_services", return_value=bundle):
            response = api_handler(event, MockContext())

        assert response["statusCode"] == 201
        session = json.loads(response["body"])["session"]
        assert session["trainer_id"] == "trainer-1"
        assert bundle.sessions.get_session(session["session_id"]) is not None


class TestNotifySlackError:
    def test_disabled_slack_sends_nothing(self, monkeypatch):
        monkeypatch.setenv("SLACK_ENABLED", "false")
        with patch("src.main.SlackWebhookClient") as mock_client:
            src.main.notify_slack_error("boom")
        mock_client.assert_not_called()

    def test_enabled_slack_posts_alert(self, monkeypatch):
        monkeypatch.setenv("SLACK_ENABLED", "true")
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.com/services/T/B/X")
        with patch("src.main.SlackWebhookClient") as mock_client:
            src.main.notify_slack_error("boom")
        title, text = mock_client.return_value.send_staff_alert.call_args[0]
        assert title == "Reminder sweep failed"
        assert "boom" in text
