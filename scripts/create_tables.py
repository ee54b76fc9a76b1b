#!/usr/bin/env python3
"""
Create the DynamoDB tables used by the session engine and reminder sweep.

Intended for DynamoDB Local and fresh development accounts. Existing tables
are left untouched.

Usage examples:
    python scripts/create_tables.py --endpoint-url http://localhost:8000
    SESSIONS_TABLE=dev_training_sessions python scripts/create_tables.py --region me-central-1
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config.settings import Settings  # noqa: E402
from src.database.tables import create_tables  # noqa: E402


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create DynamoDB tables for the gym session engine."
    )
    parser.add_argument(
        "--region",
        default=None,
        help="AWS region (defaults to AWS_REGION or the settings default)",
    )
    parser.add_argument(
        "--endpoint-url",
        default=None,
        help="DynamoDB endpoint override, e.g. http://localhost:8000 for DynamoDB Local",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    settings = Settings(region_name=args.region)

    dynamodb = boto3.resource(
        "dynamodb", region_name=settings.region_name, endpoint_url=args.endpoint_url
    )

    try:
        created = create_tables(dynamodb, settings.table_names())
    except (ClientError, BotoCoreError) as exc:
        print(f"[ERROR] Failed to create tables: {exc}", file=sys.stderr)
        return 1

    if created:
        for name in created:
            print(f"[CREATED] {name}")
    else:
        print("All tables already exist")
    return 0


if __name__ == "__main__":
    sys.exit(main())
