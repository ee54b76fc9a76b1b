"""
Slack webhook notifications client.

Used for staff alerts, such as member change requests on training sessions.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

import requests

from src.utils.logger import StructuredLogger, get_logger


class SlackServiceError(Exception):
    """Raised when the Slack service fails to deliver a message."""


class SlackWebhookClient:
    """
    Client for sending notifications through Slack webhooks.

    Attributes:
        webhook_url: Slack incoming webhook URL
        logger: Structured logger instance
        max_retries: Number of retry attempts
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        http_client: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 0.5,
    ) -> None:
        """
        Initialize the Slack webhook client.

        Args:
            webhook_url: Slack incoming webhook URL (None disables the client)
            http_client: Optional requests-like session (useful for testing)
            logger: Optional structured logger instance
            max_retries: Number of attempts when sending messages
            retry_delay_seconds: Base delay between retries (linear backoff)
        """
        self.logger = logger or get_logger(__name__)
        self.http_client = http_client or requests.Session()
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

        self.webhook_url = webhook_url or None
        if not self.webhook_url:
            self.logger.warning("Slack webhook URL not configured; Slack notifications disabled")

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def send_staff_alert(self, title: str, text: str) -> bool:
        """Send a staff alert as a single mrkdwn section."""
        payload = {
            "text": title,
            "blocks": [
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": text},
                }
            ],
        }
        return self._dispatch(payload, action="send_staff_alert")

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _dispatch(
        self,
        payload: Dict[str, Any],
        action: str,
        max_retries: Optional[int] = None,
    ) -> bool:
        """Send payload to Slack webhook with retry handling."""
        if not self.webhook_url:
            self.logger.debug(
                "Slack webhook not configured; skipping notification",
                operation=action,
            )
            return False

        max_retries = max_retries or self.max_retries
        body = json.dumps(payload)

        for attempt in range(1, max_retries + 1):
            try:
                response = self.http_client.post(
                    self.webhook_url,
                    headers={"Content-Type": "application/json"},
                    data=body,
                    timeout=10,
                )

                if response.status_code == 429:
                    retry_after = int(response.headers.get("Retry-After", 60))
                    self.logger.warning(
                        "Slack rate limited",
                        operation=action,
                        context={
                            "status": "rate_limited",
                            "attempt": attempt,
                            "retry_after": retry_after,
                        },
                    )
                    if attempt < max_retries:
                        time.sleep(min(retry_after, self.retry_delay_seconds * attempt))
                        continue
                    raise SlackServiceError(f"Rate limited; retry after {retry_after}s")

                if response.status_code >= 400:
                    raise SlackServiceError(
                        f"Slack responded with {response.status_code}: {response.text}"
                    )

                self.logger.debug(
                    "Slack notification delivered",
                    operation=action,
                    context={"status": "success", "attempt": attempt},
                )
                return True

            except (SlackServiceError, requests.RequestException) as exc:
                if attempt >= max_retries:
                    # Staff alerts are best-effort; log and carry on
                    self.logger.error(
                        "Slack delivery failed",
                        operation=action,
                        context={"status": "failed", "attempt": attempt},
                        error=str(exc),
                    )
                    return False

                self.logger.warning(
                    "Retrying Slack delivery",
                    operation=action,
                    context={"status": "retry", "attempt": attempt},
                    error=str(exc),
                )
                time.sleep(self.retry_delay_seconds * attempt)

        return False
