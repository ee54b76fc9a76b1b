"""
Amazon SES email notifications client.

Delivery is best-effort: every failure is logged and reported through
NotificationResult, never raised to the caller. Lifecycle operations and
reminder sweeps therefore never fail because an email could not be sent.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.utils.logger import StructuredLogger, get_logger, mask_email
from .templates import EmailTemplateLoader

# SES rejects these permanently; retrying cannot help
NON_RETRYABLE_ERRORS = {
    "MessageRejected",
    "MailFromDomainNotVerifiedException",
    "ConfigurationSetDoesNotExistException",
    "AccessDenied",
    "AccessDeniedException",
}


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None
    skipped: bool = False


class SesEmailClient:
    """
    Client for sending HTML email through Amazon SES.

    Attributes:
        sender: Verified SES source address
        delivery_enabled: When False, messages are logged and not sent
        max_retries: Number of attempts per message
    """

    def __init__(
        self,
        sender: str,
        ses_client: Optional[Any] = None,
        region_name: Optional[str] = None,
        templates: Optional[EmailTemplateLoader] = None,
        delivery_enabled: bool = True,
        logger: Optional[StructuredLogger] = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 0.5,
    ) -> None:
        """
        Args:
            sender: Source address (must be verified in SES)
            ses_client: Optional boto3 SES client (useful for testing)
            region_name: Region for the default client
            templates: Template loader used by notify_template
            delivery_enabled: Gate for actual delivery (EMAIL_DELIVERY_ENABLED)
            logger: Optional structured logger instance
            max_retries: Number of attempts when sending
            retry_delay_seconds: Base delay between retries (linear backoff)
        """
        self.sender = sender
        self.logger = logger or get_logger(__name__)
        self.ses = ses_client or boto3.client("ses", region_name=region_name)
        self.templates = templates or EmailTemplateLoader(logger=self.logger)
        self.delivery_enabled = delivery_enabled
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def notify(self, recipient: Optional[str], subject: str, body_html: str) -> NotificationResult:
        """Send one email. Never raises."""
        action = "send_email"
        recipient_masked = mask_email(recipient)

        if not recipient:
            self.logger.warning(
                "No recipient address; email not sent",
                operation=action,
                context={"subject": subject},
            )
            return NotificationResult(success=False, error="missing recipient")

        if not self.delivery_enabled:
            self.logger.info(
                "Email delivery disabled; message not sent",
                operation=action,
                context={"recipient_masked": recipient_masked, "subject": subject},
            )
            return NotificationResult(success=True, skipped=True)

        last_error = "unknown error"
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.ses.send_email(
                    Source=self.sender,
                    Destination={"ToAddresses": [recipient]},
                    Message={
                        "Subject": {"Data": subject, "Charset": "UTF-8"},
                        "Body": {"Html": {"Data": body_html, "Charset": "UTF-8"}},
                    },
                )
                self.logger.info(
                    "Email delivered",
                    operation=action,
                    context={
                        "status": "success",
                        "attempt": attempt,
                        "recipient_masked": recipient_masked,
                    },
                )
                return NotificationResult(success=True, message_id=response.get("MessageId"))

            except ClientError as exc:
                error_code = exc.response.get("Error", {}).get("Code", "Unknown")
                last_error = f"{error_code}: {exc}"
                if error_code in NON_RETRYABLE_ERRORS:
                    break
            except BotoCoreError as exc:
                last_error = str(exc)

            if attempt < self.max_retries:
                self.logger.warning(
                    "Retrying email delivery",
                    operation=action,
                    context={
                        "status": "retry",
                        "attempt": attempt,
                        "recipient_masked": recipient_masked,
                    },
                    error=last_error,
                )
                time.sleep(self.retry_delay_seconds * attempt)

        self.logger.error(
            "Email delivery failed",
            operation=action,
            context={"status": "failed", "recipient_masked": recipient_masked},
            error=last_error,
        )
        return NotificationResult(success=False, error=last_error)

    def notify_template(
        self, recipient: Optional[str], template_name: str, **context: Any
    ) -> NotificationResult:
        """Render a named template and send it. Rendering failures are reported, not raised."""
        try:
            subject, body = self.templates.render_email(template_name, **context)
        except Exception as exc:  # noqa: BLE001 - template problems must not break callers
            self.logger.error(
                "Email template rendering failed",
                operation="send_email",
                context={"template": template_name},
                error=str(exc),
            )
            return NotificationResult(success=False, error=f"template error: {exc}")
        return self.notify(recipient, subject, body)
