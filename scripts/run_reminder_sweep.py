#!/usr/bin/env python3
"""
Run the reminder sweep locally.

Emails are only sent when --send is given (or EMAIL_DELIVERY_ENABLED=true);
otherwise each notice is rendered and logged. --at replays the sweep as of a
fixed instant, which is handy for checking reminder windows.

Usage examples:
    python scripts/run_reminder_sweep.py --endpoint-url http://localhost:8000
    python scripts/run_reminder_sweep.py --at 2026-10-19T06:00:00Z --only session_reminders
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

import boto3

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config.settings import Settings  # noqa: E402
from src.main import build_services  # noqa: E402
from src.utils.clock import FixedClock, SystemClock, parse_timestamp  # noqa: E402

SWEEPS = (
    "membership_expiring",
    "membership_expired",
    "payment_reminders",
    "payment_overdue",
    "appointment_reminders",
    "class_reminders",
    "session_reminders",
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the gym reminder sweep locally.")
    parser.add_argument("--region", default=None, help="AWS region")
    parser.add_argument(
        "--endpoint-url",
        default=None,
        help="DynamoDB endpoint override, e.g. http://localhost:8000",
    )
    parser.add_argument(
        "--at",
        default=None,
        help="Run as of this ISO-8601 instant instead of now",
    )
    parser.add_argument(
        "--only",
        choices=SWEEPS,
        default=None,
        help="Run a single sub-sweep",
    )
    parser.add_argument(
        "--send",
        action="store_true",
        help="Actually deliver emails through SES",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.send:
        os.environ["EMAIL_DELIVERY_ENABLED"] = "true"

    try:
        clock = FixedClock(parse_timestamp(args.at)) if args.at else SystemClock()
    except ValueError as e:
        logger.error(f"Invalid --at value: {e}")
        return 2

    settings = Settings(region_name=args.region)
    dynamodb = boto3.resource(
        "dynamodb", region_name=settings.region_name, endpoint_url=args.endpoint_url
    )

    try:
        services = build_services(settings, dynamodb_resource=dynamodb, clock=clock)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    scheduler = services.scheduler
    results = [getattr(scheduler, args.only)()] if args.only else scheduler.run_all()

    print(json.dumps([result.to_dict() for result in results], indent=2))
    return 0 if all(result.error is None for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
