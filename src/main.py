"""
Lambda Handler - Daily reminder sweep entry point

Wires repositories, notifiers, the lifecycle engine and the reminder
scheduler from Settings, then runs every reminder sub-sweep and returns a
per-sweep summary. The caller-facing session API lives in src/api/handlers.py
and shares the same service wiring.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import boto3

from src.config.settings import ReminderPolicy, Settings, setup_logging_redaction
from src.database.directory import ProgrammeDirectory, UserDirectory
from src.database.dynamodb_client import TrainingSessionRepository
from src.database.ledger_repository import CreditLedgerRepository
from src.database.reminder_repository import (
    AppointmentRepository,
    ClassRepository,
    MembershipRepository,
    PaymentRepository,
)
from src.engine.lifecycle import SessionLifecycleEngine
from src.notifications.email_service import SesEmailClient
from src.notifications.slack_service import SlackWebhookClient
from src.notifications.templates import EmailTemplateLoader
from src.scheduler.reminders import ReminderScheduler
from src.utils.clock import Clock, SystemClock
from src.utils.logger import get_logger

logger = get_logger(__name__)

# Wired on first invocation and reused while the container stays warm
_services: Optional["ServiceBundle"] = None


@dataclass(frozen=True)
class ServiceBundle:
    settings: Settings
    sessions: TrainingSessionRepository
    ledgers: CreditLedgerRepository
    users: UserDirectory
    programmes: ProgrammeDirectory
    memberships: MembershipRepository
    payments: PaymentRepository
    appointments: AppointmentRepository
    classes: ClassRepository
    templates: EmailTemplateLoader
    email: SesEmailClient
    slack: Optional[SlackWebhookClient]
    policy: ReminderPolicy
    engine: SessionLifecycleEngine
    scheduler: ReminderScheduler


def build_services(
    settings: Optional[Settings] = None,
    dynamodb_resource: Optional[Any] = None,
    ses_client: Optional[Any] = None,
    http_client: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> ServiceBundle:
    """
    Build every service from configuration.

    Args:
        settings: Runtime settings (default: Settings())
        dynamodb_resource: boto3 DynamoDB resource (default: created for settings.region_name)
        ses_client: boto3 SES client (default: created for settings.region_name)
        http_client: requests-like session for Slack (useful for testing)
        clock: Time source (default: system clock)

    Raises:
        ValueError: If the reminder configuration is invalid
    """
    settings = settings or Settings()
    clock = clock or SystemClock()
    dynamodb = dynamodb_resource or boto3.resource("dynamodb", region_name=settings.region_name)
    tables = settings.table_names()

    sessions = TrainingSessionRepository(tables["sessions"], dynamodb_resource=dynamodb)
    ledgers = CreditLedgerRepository(
        tables["ledgers"], gym_timezone=settings.gym_timezone, dynamodb_resource=dynamodb
    )
    users = UserDirectory(tables["users"], dynamodb_resource=dynamodb)
    programmes = ProgrammeDirectory(tables["programmes"], dynamodb_resource=dynamodb)
    memberships = MembershipRepository(tables["memberships"], dynamodb_resource=dynamodb)
    payments = PaymentRepository(tables["payments"], dynamodb_resource=dynamodb)
    appointments = AppointmentRepository(tables["appointments"], dynamodb_resource=dynamodb)
    classes = ClassRepository(tables["classes"], dynamodb_resource=dynamodb)

    templates = EmailTemplateLoader(settings.email_templates_path, logger=logger)
    email = SesEmailClient(
        sender=settings.email_sender,
        ses_client=ses_client or boto3.client("ses", region_name=settings.region_name),
        templates=templates,
        delivery_enabled=settings.is_email_delivery_enabled(),
    )

    slack = None
    if settings.is_slack_enabled():
        slack = SlackWebhookClient(
            webhook_url=settings.load_slack_webhook_url(), http_client=http_client
        )
    else:
        logger.info("Skipping Slack staff alerts (disabled)", operation="build_services")

    policy = settings.load_reminder_policy()
    gym_tz = settings.gym_timezone

    engine = SessionLifecycleEngine(
        sessions=sessions,
        ledgers=ledgers,
        users=users,
        programmes=programmes,
        notifier=email,
        staff_alerts=slack,
        staff_alert_email=settings.staff_alert_email,
        templates=templates,
        clock=clock,
        gym_timezone=gym_tz,
    )
    scheduler = ReminderScheduler(
        users=users,
        notifier=email,
        sessions=sessions,
        memberships=memberships,
        payments=payments,
        appointments=appointments,
        classes=classes,
        policy=policy,
        clock=clock,
        gym_timezone=gym_tz,
    )

    return ServiceBundle(
        settings=settings,
        sessions=sessions,
        ledgers=ledgers,
        users=users,
        programmes=programmes,
        memberships=memberships,
        payments=payments,
        appointments=appointments,
        classes=classes,
        templates=templates,
        email=email,
        slack=slack,
        policy=policy,
        engine=engine,
        scheduler=scheduler,
    )


def get_services() -> ServiceBundle:
    global _services
    if _services is None:
        settings = Settings()
        setup_logging_redaction(settings)
        _services = build_services(settings)
    return _services


def reset_services() -> None:
    """Drop the cached wiring (tests and environment changes)."""
    global _services
    _services = None


def lambda_handler(event, context):
    """
    Scheduled Lambda handler for the daily reminder sweep.

    Args:
        event: EventBridge schedule event (not used)
        context: Lambda context

    Returns:
        dict: Status 200 with per-sweep counts, or 500 with the error
    """
    lambda_start_time = time.time()
    logger.info(
        "Reminder sweep started",
        operation="lambda_start",
        context={
            "aws_request_id": getattr(context, "aws_request_id", "local") if context else "local",
        },
    )

    try:
        services = get_services()
        results = services.scheduler.run_all()
    except Exception as e:
        lambda_duration_ms = (time.time() - lambda_start_time) * 1000
        logger.error(
            "Reminder sweep failed",
            operation="lambda_complete",
            context={"status": "failure", "error_type": type(e).__name__},
            error=str(e),
            duration_ms=lambda_duration_ms,
        )
        notify_slack_error(f"{type(e).__name__}: {e}")
        return {
            "statusCode": 500,
            "body": json.dumps(
                {
                    "error": "Reminder sweep failed",
                    "message": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": round(lambda_duration_ms, 2),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            ),
        }

    lambda_duration_ms = (time.time() - lambda_start_time) * 1000
    summary = {
        "sent": sum(result.sent for result in results),
        "failed": sum(result.failed for result in results),
        "skipped": sum(result.skipped for result in results),
    }
    logger.info(
        "Reminder sweep completed",
        operation="lambda_complete",
        context={"status": "success", **summary},
        duration_ms=lambda_duration_ms,
    )

    return {
        "statusCode": 200,
        "body": json.dumps(
            {
                "message": "Reminder sweep completed",
                **summary,
                "sweeps": [result.to_dict() for result in results],
                "duration_ms": round(lambda_duration_ms, 2),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ),
    }


def notify_slack_error(error_message: str) -> None:
    """Send sweep failure to Slack when staff alerts are enabled. Never raises."""
    try:
        settings = Settings()
        if not settings.is_slack_enabled():
            return
        client = SlackWebhookClient(webhook_url=settings.load_slack_webhook_url())
        client.send_staff_alert(
            "Reminder sweep failed", f":rotating_light: *Reminder sweep failed*\n`{error_message}`"
        )
    except Exception as slack_err:
        logger.error(
            "Failed to send Slack error notification",
            operation="notify_error_slack",
            error=str(slack_err),
        )


if __name__ == "__main__":
    """
    Local testing entry point.

    Simulates Lambda execution environment with mock context.
    """

    class MockContext:
        def __init__(self):
            self.function_name = "gym-reminder-sweep"
            self.aws_request_id = "local-test"
            self.invoked_function_arn = "arn:aws:lambda:local:local"

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    result = lambda_handler({}, MockContext())
    print(json.dumps(result, indent=2))
