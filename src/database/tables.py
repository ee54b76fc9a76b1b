"""
Table definitions for every table this service reads or writes.

Used by scripts/create_tables.py for local DynamoDB and by the test suite
to create moto tables.
"""

from typing import Any, Dict, List

from src.utils.logger import get_logger

logger = get_logger(__name__)


def _single_key(table_name: str, key: str) -> Dict[str, Any]:
    return {
        "TableName": table_name,
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": key, "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    }


def _session_table(table_name: str) -> Dict[str, Any]:
    return {
        "TableName": table_name,
        "KeySchema": [{"AttributeName": "session_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "session_id", "AttributeType": "S"},
            {"AttributeName": "member_id", "AttributeType": "S"},
            {"AttributeName": "trainer_id", "AttributeType": "S"},
            {"AttributeName": "start_time", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "member_id-index",
                "KeySchema": [
                    {"AttributeName": "member_id", "KeyType": "HASH"},
                    {"AttributeName": "start_time", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": "trainer_id-index",
                "KeySchema": [
                    {"AttributeName": "trainer_id", "KeyType": "HASH"},
                    {"AttributeName": "start_time", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }


def table_definitions(table_names: Dict[str, str]) -> List[Dict[str, Any]]:
    """
    Build CreateTable parameters.

    Args:
        table_names: Logical name -> physical table name, as produced by
            Settings.table_names()
    """
    return [
        _session_table(table_names["sessions"]),
        _single_key(table_names["ledgers"], "member_id"),
        _single_key(table_names["users"], "user_id"),
        _single_key(table_names["programmes"], "programme_id"),
        _single_key(table_names["memberships"], "membership_id"),
        _single_key(table_names["payments"], "payment_id"),
        _single_key(table_names["appointments"], "appointment_id"),
        _single_key(table_names["classes"], "class_id"),
    ]


def create_tables(dynamodb_resource: Any, table_names: Dict[str, str]) -> List[str]:
    """Create any missing tables and return the names that were created."""
    existing = {table.name for table in dynamodb_resource.tables.all()}
    created = []
    for definition in table_definitions(table_names):
        name = definition["TableName"]
        if name in existing:
            logger.debug(f"Table {name} already exists", operation="create_tables")
            continue
        dynamodb_resource.create_table(**definition)
        created.append(name)
        logger.info(f"Created table {name}", operation="create_tables")
    return created
