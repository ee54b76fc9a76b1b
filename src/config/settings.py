"""
Configuration loader for the gym training session engine.

Reads table names and feature flags from the environment, fetches
credentials from AWS Secrets Manager with caching and exponential backoff,
validates the reminder policy against its JSON schema, and installs a
logging filter that redacts loaded secrets.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
import jsonschema
import yaml
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

CONFIG_ROOT = Path(__file__).resolve().parent


# Secrets Manager secret name. This is a NAME, not a value.
SLACK_SECRET_ID = "gym-session-engine/slack-credentials"  # nosec B105

# For local development with a dummy credentials file
USE_LOCAL_SECRETS = os.getenv("USE_LOCAL_SECRETS_FILE", "false").lower() == "true"
LOCAL_SECRETS_FILE = os.getenv("LOCAL_SECRETS_FILE_PATH", ".local/secrets.json")

# Slack staff alerts. Disabled unless explicitly enabled.
SLACK_ENABLED = os.getenv("SLACK_ENABLED", "false").lower() == "true"
SLACK_WEBHOOK_URL_ENV = os.getenv("SLACK_WEBHOOK_URL", None)

# Email delivery gate. When False, emails are rendered and logged but not sent.
EMAIL_DELIVERY_ENABLED = os.getenv("EMAIL_DELIVERY_ENABLED", "false").lower() == "true"

DEFAULT_REGION = "me-central-1"

TABLE_ENV_VARS = {
    "sessions": ("SESSIONS_TABLE", "training_sessions"),
    "ledgers": ("LEDGERS_TABLE", "credit_ledgers"),
    "users": ("USERS_TABLE", "users"),
    "programmes": ("PROGRAMMES_TABLE", "programmes"),
    "memberships": ("MEMBERSHIPS_TABLE", "memberships"),
    "payments": ("PAYMENTS_TABLE", "payments"),
    "appointments": ("APPOINTMENTS_TABLE", "appointments"),
    "classes": ("CLASSES_TABLE", "classes"),
}


@dataclass(frozen=True)
class ReminderPolicy:
    """Thresholds for the daily reminder sweep."""

    membership_lookahead_days: int = 7
    payment_reminder_after_days: int = 3
    payment_overdue_after_days: int = 7
    appointment_thresholds_hours: List[int] = field(default_factory=lambda: [24, 1])
    session_thresholds_hours: List[int] = field(default_factory=lambda: [24, 1])
    class_lookahead_days: int = 1
    dedupe_same_day: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReminderPolicy":
        memberships = data.get("memberships", {})
        payments = data.get("payments", {})
        appointments = data.get("appointments", {})
        sessions = data.get("sessions", {})
        classes = data.get("classes", {})
        defaults = cls()
        return cls(
            membership_lookahead_days=memberships.get(
                "expiring_lookahead_days", defaults.membership_lookahead_days
            ),
            payment_reminder_after_days=payments.get(
                "reminder_after_days", defaults.payment_reminder_after_days
            ),
            payment_overdue_after_days=payments.get(
                "overdue_after_days", defaults.payment_overdue_after_days
            ),
            appointment_thresholds_hours=list(
                appointments.get("thresholds_hours", defaults.appointment_thresholds_hours)
            ),
            session_thresholds_hours=list(
                sessions.get("thresholds_hours", defaults.session_thresholds_hours)
            ),
            class_lookahead_days=classes.get("lookahead_days", defaults.class_lookahead_days),
            dedupe_same_day=data.get("dedupe_same_day", defaults.dedupe_same_day),
        )


class SecretRedactionFilter(logging.Filter):
    """
    Logging filter that redacts secret values from log records.
    Replaces secret substrings with ***REDACTED*** to prevent accidental leakage.
    """

    def __init__(self, secrets: Optional[Dict[str, Any]] = None):
        """
        Initialize filter with secrets to redact.

        Args:
            secrets: Dictionary of secrets to redact (values will be masked)
        """
        super().__init__()
        self.secrets = secrets or {}
        self.redacted_values: set[str] = set()
        if self.secrets:
            self._extract_secret_values(self.secrets)

    def _extract_secret_values(self, obj: Any, max_depth: int = 5) -> None:
        """Recursively extract all secret values from nested structures."""
        if max_depth <= 0:
            return

        if isinstance(obj, dict):
            for value in obj.values():
                self._extract_secret_values(value, max_depth - 1)
        elif isinstance(obj, (list, tuple)):
            for item in obj:
                self._extract_secret_values(item, max_depth - 1)
        elif isinstance(obj, str) and obj and len(obj) > 3:
            # Only redact strings with meaningful length
            self.redacted_values.add(obj)

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter and redact log record."""
        try:
            record.msg = self._redact_string(str(record.msg))
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {k: self._redact_string(str(v)) for k, v in record.args.items()}
                elif isinstance(record.args, (list, tuple)):
                    record.args = tuple(self._redact_string(str(arg)) for arg in record.args)
        except Exception as e:
            logger.warning(f"Error during secret redaction: {e}")
        return True

    def _redact_string(self, text: str) -> str:
        """Redact all secret values from string."""
        for secret in self.redacted_values:
            if secret in text:
                text = text.replace(secret, "***REDACTED***")
        return text


class Settings:
    """
    Runtime configuration.

    Environment variables are read when the instance is created so tests can
    monkeypatch them per case.
    """

    def __init__(self, region_name: Optional[str] = None):
        """
        Args:
            region_name: AWS region (defaults to AWS_REGION or me-central-1)
        """
        self.region_name = region_name or os.getenv("AWS_REGION", DEFAULT_REGION)
        self.email_sender = os.getenv("EMAIL_SENDER", "no-reply@example-gym.com")
        self.staff_alert_email = os.getenv("STAFF_ALERT_EMAIL") or None
        self.email_delivery_enabled = (
            os.getenv("EMAIL_DELIVERY_ENABLED", str(EMAIL_DELIVERY_ENABLED)).lower() == "true"
        )
        self.slack_enabled = os.getenv("SLACK_ENABLED", str(SLACK_ENABLED)).lower() == "true"
        self.gym_utc_offset_hours = float(os.getenv("GYM_UTC_OFFSET_HOURS", "4"))
        self.reminder_config_path = Path(
            os.getenv("REMINDER_CONFIG_PATH", str(CONFIG_ROOT / "reminders.yaml"))
        )
        self.reminder_schema_path = Path(
            os.getenv("REMINDER_SCHEMA_PATH", str(CONFIG_ROOT / "reminders.schema.json"))
        )
        self.email_templates_path = Path(
            os.getenv("EMAIL_TEMPLATES_PATH", str(CONFIG_ROOT / "email_templates.yaml"))
        )

    @property
    def gym_timezone(self) -> timezone:
        return timezone(timedelta(hours=self.gym_utc_offset_hours))

    def table_names(self) -> Dict[str, str]:
        """Logical table name -> physical table name."""
        return {
            logical: os.getenv(env_var, default)
            for logical, (env_var, default) in TABLE_ENV_VARS.items()
        }

    def is_email_delivery_enabled(self) -> bool:
        return self.email_delivery_enabled

    def is_slack_enabled(self) -> bool:
        return self.slack_enabled

    @staticmethod
    def _get_secret_value(
        secret_id: str,
        region_name: str = DEFAULT_REGION,
        max_retries: int = 3,
        base_wait: float = 1.0,
    ) -> Dict[str, Any]:
        """
        Fetch secret from Secrets Manager with exponential backoff.

        Args:
            secret_id: Secret identifier in Secrets Manager
            region_name: AWS region holding the secret
            max_retries: Maximum number of retry attempts
            base_wait: Base wait time in seconds for exponential backoff

        Returns:
            Parsed secret JSON as dictionary

        Raises:
            RuntimeError: If secret cannot be retrieved after retries
        """
        client = boto3.client("secretsmanager", region_name=region_name)

        for attempt in range(max_retries):
            try:
                response = client.get_secret_value(SecretId=secret_id)
                secret_string = response.get("SecretString")
                if not secret_string:
                    raise ValueError(f"Secret {secret_id} has empty value")
                return json.loads(secret_string)
            except ClientError as e:
                error_code = e.response["Error"]["Code"]
                if error_code == "ResourceNotFoundException":
                    raise RuntimeError(
                        f"Secret '{secret_id}' not found in Secrets Manager "
                        f"(region {region_name})"
                    ) from e
                elif error_code in ["AccessDeniedException", "UnauthorizedOperation"]:
                    raise RuntimeError(
                        f"Access denied to secret '{secret_id}'. "
                        f"Verify the execution role has secretsmanager:GetSecretValue permission"
                    ) from e
                elif error_code == "DecryptionFailure":
                    raise RuntimeError(
                        f"Failed to decrypt secret '{secret_id}'. Verify KMS key permissions"
                    ) from e
                else:
                    if attempt < max_retries - 1:
                        wait_time = base_wait * (2**attempt)
                        logger.warning(
                            f"Transient error fetching secret {secret_id}: {error_code}. "
                            f"Retrying in {wait_time}s (attempt {attempt + 1}/{max_retries})"
                        )
                        time.sleep(wait_time)
                    else:
                        raise RuntimeError(
                            f"Failed to retrieve secret '{secret_id}' after {max_retries} attempts: {error_code}"
                        ) from e
            except json.JSONDecodeError as e:
                raise RuntimeError(f"Secret '{secret_id}' contains invalid JSON: {str(e)}") from e

        raise RuntimeError(
            f"Failed to retrieve secret '{secret_id}' - exhausted all retry attempts"
        )

    def load_slack_webhook_url(self) -> Optional[str]:
        """
        Load the Slack webhook URL used for staff alerts.

        Priority:
        1. SLACK_WEBHOOK_URL environment variable
        2. Local secrets file (USE_LOCAL_SECRETS_FILE=true)
        3. Secrets Manager

        Returns:
            Webhook URL string or None if not configured
        """
        env_url = os.getenv("SLACK_WEBHOOK_URL", SLACK_WEBHOOK_URL_ENV or "")
        if env_url:
            return env_url

        if USE_LOCAL_SECRETS:
            try:
                return self._load_from_local_file(LOCAL_SECRETS_FILE).get("slack", {}).get(
                    "webhook_url"
                )
            except RuntimeError as e:
                logger.warning(f"Failed to load Slack webhook from local secrets: {e}")
                return None

        try:
            credentials = self._get_secret_value(SLACK_SECRET_ID, self.region_name)
            return credentials.get("webhook_url")
        except RuntimeError as e:
            logger.warning(f"Failed to load Slack webhook from Secrets Manager: {e}")
            return None

    @staticmethod
    def _load_from_local_file(filepath: str) -> Dict[str, Any]:
        """
        Load secrets from local JSON file for development.

        Raises:
            RuntimeError: If file cannot be read or contains invalid JSON
        """
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise RuntimeError(
                f"Local secrets file not found: {filepath}. "
                f"Use AWS Secrets Manager or provide USE_LOCAL_SECRETS_FILE=true and LOCAL_SECRETS_FILE_PATH"
            )
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Local secrets file contains invalid JSON: {str(e)}")

    def load_reminder_policy(
        self,
        config_path: Optional[Path] = None,
        schema_path: Optional[Path] = None,
    ) -> ReminderPolicy:
        """
        Load reminder thresholds from YAML and validate against the JSON schema.

        Raises:
            FileNotFoundError: If config files not found
            ValueError: If the YAML, the schema, or the config is invalid
        """
        config_path = Path(config_path or self.reminder_config_path)
        schema_path = Path(schema_path or self.reminder_schema_path)

        try:
            with open(schema_path, "r", encoding="utf-8") as f:
                schema = json.load(f)
        except FileNotFoundError:
            logger.error(f"Reminder schema file not found: {schema_path}")
            raise
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {schema_path}: {e}") from e

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.error(f"Reminder configuration file not found: {config_path}")
            raise
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        try:
            jsonschema.validate(instance=config, schema=schema)
        except jsonschema.ValidationError as e:
            logger.error(f"Reminder configuration failed schema validation: {e.message}")
            raise ValueError(f"Reminder configuration validation failed: {e.message}") from e
        except jsonschema.SchemaError as e:
            raise ValueError(f"Reminder schema is invalid: {e.message}") from e

        policy = ReminderPolicy.from_dict(config)
        if policy.payment_overdue_after_days < policy.payment_reminder_after_days:
            raise ValueError("payments.overdue_after_days must be >= reminder_after_days")

        logger.info(f"Loaded reminder policy from {config_path}")
        return policy

    def setup_redaction_filter(self, logger_instance: logging.Logger) -> None:
        """
        Configure logger with secret redaction filter.

        Args:
            logger_instance: Logger instance to configure
        """
        secrets: Dict[str, Any] = {}
        webhook_url = self.load_slack_webhook_url() if self.slack_enabled else None
        if webhook_url:
            secrets["slack_webhook_url"] = webhook_url
        logger_instance.addFilter(SecretRedactionFilter(secrets))


def setup_logging_redaction(settings: Optional[Settings] = None) -> None:
    """Setup logging redaction for root logger."""
    (settings or Settings()).setup_redaction_filter(logging.getLogger())
