"""
DynamoDB repository implementations for training session persistence.

This module provides a clean abstraction over DynamoDB operations with
dependency injection for testability and structured logging. The base
repository owns retry and exception translation; concrete repositories
express state guards as condition expressions so that every guarded write
is a single atomic request.
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from src.domain.session import ExerciseRecord, SessionStatus, TrainingSession
from src.utils.clock import format_timestamp
from src.utils.logger import get_logger
from .exceptions import (
    ConditionFailedError,
    DynamoDBException,
    NetworkError,
    PermissionError,
    ThrottlingError,
)


logger = get_logger(__name__)

MEMBER_INDEX = "member_id-index"
TRAINER_INDEX = "trainer_id-index"


def serialize_value(value: Any) -> Any:
    """Convert domain values to their DynamoDB representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, ExerciseRecord):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [serialize_value(entry) for entry in value]
    if isinstance(value, dict):
        return {key: serialize_value(entry) for key, entry in value.items()}
    return value


def build_update_expression(
    updates: Dict[str, Any],
    increments: Optional[Dict[str, int]] = None,
) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """
    Build an UpdateExpression from a field mapping.

    None values are removed from the item, everything else is SET.
    Increments are applied as "#f = #f + :n".

    Returns:
        (expression, attribute names, attribute values)
    """
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    set_parts: List[str] = []
    remove_parts: List[str] = []

    for index, (name, value) in enumerate(updates.items()):
        placeholder = f"#u{index}"
        names[placeholder] = name
        if value is None:
            remove_parts.append(placeholder)
        else:
            values[f":u{index}"] = serialize_value(value)
            set_parts.append(f"{placeholder} = :u{index}")

    for index, (name, amount) in enumerate((increments or {}).items()):
        placeholder = f"#i{index}"
        names[placeholder] = name
        values[f":i{index}"] = amount
        set_parts.append(f"{placeholder} = {placeholder} + :i{index}")

    expression = ""
    if set_parts:
        expression = "SET " + ", ".join(set_parts)
    if remove_parts:
        expression = (expression + " REMOVE " + ", ".join(remove_parts)).strip()

    return expression, names, values


class DynamoRepository:
    """
    Base repository with retry and exception translation.

    Throttling is retried with exponential backoff; access denial, network
    failures and other client errors are translated to the DynamoDB exception
    hierarchy. Conditional-check failures surface as ConditionFailedError and
    are never retried.
    """

    def __init__(
        self,
        table_name: str,
        dynamodb_resource: Optional[Any] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
    ):
        """
        Args:
            table_name: DynamoDB table name
            dynamodb_resource: boto3 DynamoDB resource (default: creates new)
            max_retries: Number of retries for throttling errors
            backoff_base: Base exponential backoff multiplier (seconds)
        """
        self.table_name = table_name
        self.dynamodb = dynamodb_resource or boto3.resource("dynamodb")
        self.table = self.dynamodb.Table(table_name)
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    def _execute(  # type: ignore[return]
        self,
        operation: str,
        context: Dict[str, Any],
        call: Callable[[], Any],
    ) -> Any:
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()
                response = call()
                duration_ms = (time.time() - start_time) * 1000
                logger.debug(
                    "DynamoDB call succeeded",
                    operation=operation,
                    context=context,
                )
                if duration_ms > 1000:
                    logger.warning(
                        "Slow DynamoDB call",
                        operation=operation,
                        context={**context, "duration_ms": round(duration_ms, 2)},
                    )
                return response

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")

                if error_code == "ConditionalCheckFailedException":
                    logger.debug(
                        "Conditional check failed",
                        operation=operation,
                        context=context,
                    )
                    raise ConditionFailedError(f"Condition not met for {operation}") from e

                if error_code == "ProvisionedThroughputExceededException":
                    if attempt < self.max_retries - 1:
                        wait_time = self.backoff_base * (2**attempt)
                        logger.warning(
                            f"Throttled, retrying after {wait_time}s",
                            operation=operation,
                            context=context,
                            error=error_code,
                        )
                        time.sleep(wait_time)
                        continue
                    logger.error(
                        "Throttling after max retries",
                        operation=operation,
                        context=context,
                        error=error_code,
                    )
                    raise ThrottlingError(f"DynamoDB throttled after {self.max_retries} retries")

                if error_code == "AccessDeniedException":
                    logger.error(
                        "Permission denied",
                        operation=operation,
                        context=context,
                        error=error_code,
                    )
                    raise PermissionError(f"Insufficient IAM permissions: {error_code}")

                logger.error(
                    "DynamoDB error",
                    operation=operation,
                    context=context,
                    error=str(e),
                )
                raise DynamoDBException(f"DynamoDB error: {e}")

            except (BotoCoreError, OSError) as e:
                logger.error(
                    "Network error",
                    operation=operation,
                    context=context,
                    error=str(e),
                )
                raise NetworkError(f"Network error: {e}")

    def _scan_all(self, operation: str, **kwargs: Any) -> List[Dict[str, Any]]:
        """Scan the table following LastEvaluatedKey until exhausted."""
        items: List[Dict[str, Any]] = []
        params = dict(kwargs)
        while True:
            response = self._execute(
                operation, {"table": self.table_name}, lambda: self.table.scan(**params)
            )
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            params["ExclusiveStartKey"] = last_key

    def _query_all(self, operation: str, **kwargs: Any) -> List[Dict[str, Any]]:
        """Query the table (or an index) following LastEvaluatedKey until exhausted."""
        items: List[Dict[str, Any]] = []
        params = dict(kwargs)
        while True:
            response = self._execute(
                operation, {"table": self.table_name}, lambda: self.table.query(**params)
            )
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            params["ExclusiveStartKey"] = last_key


@dataclass
class SessionQuery:
    """Listing filters; all optional. Start range bounds are inclusive."""

    member_id: Optional[str] = None
    trainer_id: Optional[str] = None
    programme_id: Optional[str] = None
    status: Optional[SessionStatus] = None
    start_from: Optional[datetime] = None
    start_to: Optional[datetime] = None
    page: int = 1
    limit: int = 20


@dataclass
class SessionPage:
    sessions: List[TrainingSession] = field(default_factory=list)
    page: int = 1
    pages: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions": [session.to_dict() for session in self.sessions],
            "pagination": {"current": self.page, "pages": self.pages, "total": self.total},
        }


class TrainingSessionRepository(DynamoRepository):
    """
    Repository for TrainingSession persistence in DynamoDB.

    Table Schema:
        Partition Key: session_id
        GSI member_id-index: member_id (HASH), start_time (RANGE)
        GSI trainer_id-index: trainer_id (HASH), start_time (RANGE)
    """

    def __init__(self, table_name: str = "training_sessions", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def create_session(self, session: TrainingSession) -> TrainingSession:
        """
        Insert a new session record.

        Raises:
            ConditionFailedError: If a session with the same id already exists
        """
        item = session.to_item()
        context = {"session_id": session.session_id, "member_id": session.member_id}

        self._execute(
            "create_session",
            context,
            lambda: self.table.put_item(
                Item=item, ConditionExpression="attribute_not_exists(session_id)"
            ),
        )
        logger.info("Session created", operation="create_session", context=context)
        return session

    def get_session(self, session_id: str) -> Optional[TrainingSession]:
        """Return the session, or None when it does not exist."""
        context = {"session_id": session_id}
        response = self._execute(
            "get_session",
            context,
            lambda: self.table.get_item(Key={"session_id": session_id}, ConsistentRead=True),
        )
        item = response.get("Item")
        if item is None:
            logger.debug("Session not found", operation="get_session", context=context)
            return None
        return TrainingSession.from_item(item)

    def update_session(
        self,
        session_id: str,
        updates: Dict[str, Any],
        now: datetime,
        allowed_statuses: Optional[Iterable[SessionStatus]] = None,
        expected_version: Optional[int] = None,
    ) -> TrainingSession:
        """
        Apply field updates as one conditional write and bump the version.

        Args:
            session_id: Session to update
            updates: Field name -> new value (None removes the attribute)
            now: Timestamp recorded as updated_at
            allowed_statuses: Status values the stored record must currently have
            expected_version: Version the stored record must currently have

        Returns:
            The updated session

        Raises:
            ConditionFailedError: If the item is missing or a guard does not hold
        """
        fields = dict(updates)
        fields["updated_at"] = now
        expression, names, values = build_update_expression(fields, {"version": 1})

        conditions = ["attribute_exists(session_id)"]
        if allowed_statuses is not None:
            names["#status_guard"] = "status"
            placeholders = []
            for index, status in enumerate(sorted(s.value for s in allowed_statuses)):
                values[f":allowed{index}"] = status
                placeholders.append(f":allowed{index}")
            conditions.append(f"#status_guard IN ({', '.join(placeholders)})")
        if expected_version is not None:
            names["#version_guard"] = "version"
            values[":expected_version"] = expected_version
            conditions.append("#version_guard = :expected_version")

        context = {"session_id": session_id, "fields": sorted(updates.keys())}

        response = self._execute(
            "update_session",
            context,
            lambda: self.table.update_item(
                Key={"session_id": session_id},
                UpdateExpression=expression,
                ConditionExpression=" AND ".join(conditions),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            ),
        )
        logger.info("Session updated", operation="update_session", context=context)
        return TrainingSession.from_item(response["Attributes"])

    def append_change_request(
        self,
        session_id: str,
        request: Dict[str, Any],
        required_status: SessionStatus,
    ) -> TrainingSession:
        """
        Append a member change request without touching lifecycle fields.

        Raises:
            ConditionFailedError: If the session is missing or not in required_status
        """
        context = {"session_id": session_id, "request_type": request.get("type")}
        response = self._execute(
            "append_change_request",
            context,
            lambda: self.table.update_item(
                Key={"session_id": session_id},
                UpdateExpression=(
                    "SET #requests = list_append(if_not_exists(#requests, :empty), :request)"
                ),
                ConditionExpression="attribute_exists(session_id) AND #status = :required",
                ExpressionAttributeNames={"#requests": "change_requests", "#status": "status"},
                ExpressionAttributeValues={
                    ":request": [serialize_value(request)],
                    ":empty": [],
                    ":required": required_status.value,
                },
                ReturnValues="ALL_NEW",
            ),
        )
        logger.info(
            "Change request recorded", operation="append_change_request", context=context
        )
        return TrainingSession.from_item(response["Attributes"])

    def claim_flag(self, session_id: str, flag_name: str) -> bool:
        """
        Set a reminder flag only if it is not already set.

        Returns:
            True if this call set the flag, False if it was already set
        """
        context = {"session_id": session_id, "flag": flag_name}
        try:
            self._execute(
                "claim_flag",
                context,
                lambda: self.table.update_item(
                    Key={"session_id": session_id},
                    UpdateExpression="SET #flag = :true",
                    ConditionExpression=(
                        "attribute_exists(session_id) AND "
                        "(attribute_not_exists(#flag) OR #flag = :false)"
                    ),
                    ExpressionAttributeNames={"#flag": flag_name},
                    ExpressionAttributeValues={":true": True, ":false": False},
                ),
            )
        except ConditionFailedError:
            return False
        return True

    def release_flag(self, session_id: str, flag_name: str) -> None:
        """Clear a reminder flag so the next sweep retries the notification."""
        context = {"session_id": session_id, "flag": flag_name}
        self._execute(
            "release_flag",
            context,
            lambda: self.table.update_item(
                Key={"session_id": session_id},
                UpdateExpression="SET #flag = :false",
                ExpressionAttributeNames={"#flag": flag_name},
                ExpressionAttributeValues={":false": False},
            ),
        )

    def list_sessions(self, query: SessionQuery) -> SessionPage:
        """
        List sessions matching the query, newest start first, one page at a time.

        Uses the member or trainer GSI when those filters are present and falls
        back to a full scan otherwise.
        """
        filters = []
        if query.programme_id:
            filters.append(Attr("programme_id").eq(query.programme_id))
        if query.status:
            filters.append(Attr("status").eq(SessionStatus(query.status).value))

        range_condition = None
        if query.start_from and query.start_to:
            range_condition = Key("start_time").between(
                format_timestamp(query.start_from), format_timestamp(query.start_to)
            )
        elif query.start_from:
            range_condition = Key("start_time").gte(format_timestamp(query.start_from))
        elif query.start_to:
            range_condition = Key("start_time").lte(format_timestamp(query.start_to))

        if query.member_id or query.trainer_id:
            if query.member_id:
                index, key_condition = MEMBER_INDEX, Key("member_id").eq(query.member_id)
                if query.trainer_id:
                    filters.append(Attr("trainer_id").eq(query.trainer_id))
            else:
                index, key_condition = TRAINER_INDEX, Key("trainer_id").eq(query.trainer_id)
            if range_condition is not None:
                key_condition = key_condition & range_condition

            params: Dict[str, Any] = {"IndexName": index, "KeyConditionExpression": key_condition}
            if filters:
                params["FilterExpression"] = _combine(filters)
            items = self._query_all("list_sessions", **params)
        else:
            if range_condition is not None:
                # Key conditions are only valid on queries; reuse the bounds as a filter
                filters.append(_range_as_filter(query))
            params = {}
            if filters:
                params["FilterExpression"] = _combine(filters)
            items = self._scan_all("list_sessions", **params)

        sessions = sorted(
            (TrainingSession.from_item(item) for item in items),
            key=lambda session: session.start_time,
            reverse=True,
        )

        limit = max(1, query.limit)
        page = max(1, query.page)
        total = len(sessions)
        offset = (page - 1) * limit

        logger.debug(
            f"Listed {total} sessions",
            operation="list_sessions",
            context={"page": page, "limit": limit},
        )

        return SessionPage(
            sessions=sessions[offset : offset + limit],
            page=page,
            pages=math.ceil(total / limit),
            total=total,
        )

    def scan_sessions(self, filter_expression: Optional[Any] = None) -> List[TrainingSession]:
        """Return every session matching an optional boto3 condition."""
        params = {}
        if filter_expression is not None:
            params["FilterExpression"] = filter_expression
        return [TrainingSession.from_item(item) for item in self._scan_all("scan_sessions", **params)]


def _combine(conditions: List[Any]) -> Any:
    combined = conditions[0]
    for condition in conditions[1:]:
        combined = combined & condition
    return combined


def _range_as_filter(query: SessionQuery) -> Any:
    if query.start_from and query.start_to:
        return Attr("start_time").between(
            format_timestamp(query.start_from), format_timestamp(query.start_to)
        )
    if query.start_from:
        return Attr("start_time").gte(format_timestamp(query.start_from))
    return Attr("start_time").lte(format_timestamp(query.start_to))  # type: ignore[arg-type]
