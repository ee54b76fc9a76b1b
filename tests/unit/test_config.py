"""
Unit tests for configuration loader (src/config/settings.py)

Tests covering:
- SecretRedactionFilter for logging
- Settings environment handling and table names
- Slack webhook lookup (env, local file, Secrets Manager)
- Reminder policy loading and schema validation
"""

import json
import logging
import os
from datetime import timedelta
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from src.config import settings as settings_module
from src.config.settings import (
    SLACK_SECRET_ID,
    ReminderPolicy,
    SecretRedactionFilter,
    Settings,
    setup_logging_redaction,
)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fixture for AWS credentials."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove configuration-related env vars so each test starts from defaults."""
    for key in list(os.environ.keys()):
        if key.endswith("_TABLE") or key in (
            "AWS_REGION",
            "EMAIL_SENDER",
            "STAFF_ALERT_EMAIL",
            "EMAIL_DELIVERY_ENABLED",
            "SLACK_ENABLED",
            "SLACK_WEBHOOK_URL",
            "GYM_UTC_OFFSET_HOURS",
            "REMINDER_CONFIG_PATH",
            "REMINDER_SCHEMA_PATH",
            "EMAIL_TEMPLATES_PATH",
        ):
            monkeypatch.delenv(key, raising=False)


def write_config(tmp_path, text):
    path = tmp_path / "reminders.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestSecretRedactionFilter:
    """Test secret redaction in logging."""

    def test_redaction_filter_initialization(self):
        secrets = {"webhook": "https://hooks.slack.com/services/T/B/secret"}
        filter_obj = SecretRedactionFilter(secrets)
        assert "https://hooks.slack.com/services/T/B/secret" in filter_obj.redacted_values

    def test_redaction_filter_nested_secrets(self):
        secrets = {"slack": {"webhook_url": "https://hooks.example/abc"}, "list": ["token-1234"]}
        filter_obj = SecretRedactionFilter(secrets)
        assert "https://hooks.example/abc" in filter_obj.redacted_values
        assert "token-1234" in filter_obj.redacted_values

    def test_redaction_filter_ignores_short_values(self):
        filter_obj = SecretRedactionFilter({"short": "abc"})
        assert "abc" not in filter_obj.redacted_values

    def test_redaction_filter_redacts_message_and_args(self):
        filter_obj = SecretRedactionFilter({"token": "supersecret"})
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="token=supersecret arg=%s",
            args=("supersecret",),
            exc_info=None,
        )

        assert filter_obj.filter(record) is True
        assert "supersecret" not in record.msg
        assert record.args == ("***REDACTED***",)


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self):
        settings = Settings()

        assert settings.region_name == "me-central-1"
        assert settings.is_email_delivery_enabled() is False
        assert settings.is_slack_enabled() is False
        assert settings.staff_alert_email is None
        assert settings.gym_timezone.utcoffset(None) == timedelta(hours=4)

    def test_explicit_region_wins(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        assert Settings().region_name == "eu-west-1"
        assert Settings(region_name="us-east-1").region_name == "us-east-1"

    def test_environment_flags(self, monkeypatch):
        monkeypatch.setenv("EMAIL_DELIVERY_ENABLED", "TRUE")
        monkeypatch.setenv("SLACK_ENABLED", "true")
        monkeypatch.setenv("STAFF_ALERT_EMAIL", "front-desk@example-gym.com")
        monkeypatch.setenv("GYM_UTC_OFFSET_HOURS", "5.5")

        settings = Settings()

        assert settings.is_email_delivery_enabled() is True
        assert settings.is_slack_enabled() is True
        assert settings.staff_alert_email == "front-desk@example-gym.com"
        assert settings.gym_timezone.utcoffset(None) == timedelta(hours=5, minutes=30)

    def test_table_names_defaults_and_overrides(self, monkeypatch):
        monkeypatch.setenv("SESSIONS_TABLE", "staging_sessions")

        tables = Settings().table_names()

        assert tables["sessions"] == "staging_sessions"
        assert tables["ledgers"] == "credit_ledgers"
        assert set(tables) == {
            "sessions",
            "ledgers",
            "users",
            "programmes",
            "memberships",
            "payments",
            "appointments",
            "classes",
        }


class TestSlackWebhook:
    """Test Slack webhook lookup order."""

    def test_environment_variable_first(self, monkeypatch):
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.com/services/env")
        assert Settings().load_slack_webhook_url() == "https://hooks.slack.com/services/env"

    def test_local_secrets_file(self, tmp_path):
        secrets_file = tmp_path / "secrets.json"
        secrets_file.write_text(
            json.dumps({"slack": {"webhook_url": "https://hooks.slack.com/services/local"}})
        )

        with patch.object(settings_module, "USE_LOCAL_SECRETS", True), patch.object(
            settings_module, "LOCAL_SECRETS_FILE", str(secrets_file)
        ):
            assert Settings().load_slack_webhook_url() == "https://hooks.slack.com/services/local"

    def test_missing_local_secrets_file_returns_none(self, tmp_path):
        with patch.object(settings_module, "USE_LOCAL_SECRETS", True), patch.object(
            settings_module, "LOCAL_SECRETS_FILE", str(tmp_path / "missing.json")
        ):
            assert Settings().load_slack_webhook_url() is None

    def test_secrets_manager(self, aws_credentials):
        with mock_aws():
            client = boto3.client("secretsmanager", region_name="us-east-1")
            client.create_secret(
                Name=SLACK_SECRET_ID,
                SecretString=json.dumps({"webhook_url": "https://hooks.slack.com/services/sm"}),
            )

            url = Settings(region_name="us-east-1").load_slack_webhook_url()

        assert url == "https://hooks.slack.com/services/sm"

    def test_missing_secret_returns_none(self, aws_credentials):
        with mock_aws():
            assert Settings(region_name="us-east-1").load_slack_webhook_url() is None

    def test_get_secret_value_rejects_invalid_json(self, aws_credentials):
        with mock_aws():
            client = boto3.client("secretsmanager", region_name="us-east-1")
            client.create_secret(Name="broken", SecretString="{not json")

            with pytest.raises(RuntimeError, match="invalid JSON"):
                Settings._get_secret_value("broken", "us-east-1")

    def test_setup_logging_redaction_installs_filter(self, monkeypatch):
        monkeypatch.setenv("SLACK_ENABLED", "true")
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.com/services/redact-me")
        root = logging.getLogger()
        before = list(root.filters)

        try:
            setup_logging_redaction()
            added = [f for f in root.filters if f not in before]
            assert len(added) == 1
            assert "https://hooks.slack.com/services/redact-me" in added[0].redacted_values
        finally:
            for f in root.filters[:]:
                if f not in before:
                    root.removeFilter(f)


class TestReminderPolicy:
    """Test reminder policy loading and validation."""

    def test_bundled_config_loads(self):
        settings = Settings()
        policy = settings.load_reminder_policy()

        assert policy == ReminderPolicy()

    def test_partial_config_keeps_defaults(self, tmp_path):
        path = write_config(
            tmp_path,
            "payments:\n  reminder_after_days: 2\n  overdue_after_days: 10\n"
            "sessions:\n  thresholds_hours: [24]\n",
        )

        policy = Settings().load_reminder_policy(config_path=path)

        assert policy.payment_reminder_after_days == 2
        assert policy.payment_overdue_after_days == 10
        assert policy.session_thresholds_hours == [24]
        assert policy.appointment_thresholds_hours == [24, 1]
        assert policy.membership_lookahead_days == 7

    def test_empty_config_is_all_defaults(self, tmp_path):
        path = write_config(tmp_path, "")
        assert Settings().load_reminder_policy(config_path=path) == ReminderPolicy()

    @pytest.mark.parametrize(
        "text",
        [
            "sessions:\n  thresholds_hours: [12]\n",
            "sessions:\n  thresholds_hours: []\n",
            "classes:\n  lookahead_days: 0\n",
            "unknown_section: {}\n",
            "dedupe_same_day: sometimes\n",
        ],
    )
    def test_schema_violations(self, tmp_path, text):
        path = write_config(tmp_path, text)
        with pytest.raises(ValueError, match="validation failed"):
            Settings().load_reminder_policy(config_path=path)

    def test_overdue_before_reminder_rejected(self, tmp_path):
        path = write_config(
            tmp_path, "payments:\n  reminder_after_days: 5\n  overdue_after_days: 2\n"
        )
        with pytest.raises(ValueError, match="overdue_after_days"):
            Settings().load_reminder_policy(config_path=path)

    def test_invalid_yaml(self, tmp_path):
        path = write_config(tmp_path, "payments: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            Settings().load_reminder_policy(config_path=path)

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings().load_reminder_policy(config_path=tmp_path / "nope.yaml")

    def test_environment_path_override(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "memberships:\n  expiring_lookahead_days: 14\n")
        monkeypatch.setenv("REMINDER_CONFIG_PATH", str(path))

        assert Settings().load_reminder_policy().membership_lookahead_days == 14
