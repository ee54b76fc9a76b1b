"""
Repositories for the records scanned by the reminder sweep.

Reminder markers follow one pattern for every table: a conditional "claim"
write sets the marker only if it does not already hold the value, the
notification is sent, and the marker is released if delivery failed. Two
sweeps running concurrently therefore cannot both notify for the same
record and threshold.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr

from src.domain.reminders import Appointment, GymClass, Membership, Payment
from src.utils.clock import format_timestamp
from src.utils.logger import get_logger
from .dynamodb_client import DynamoRepository
from .exceptions import ConditionFailedError

logger = get_logger(__name__)


class MarkerRepository(DynamoRepository):
    """Base for tables keyed by a single string partition key."""

    key_name = "id"

    def _key(self, key_value: str) -> Dict[str, str]:
        return {self.key_name: key_value}

    def claim_marker(self, key_value: str, marker: str, value: Any = True) -> bool:
        """
        Set marker to value unless it already holds that value.

        Returns:
            True if this call set the marker
        """
        context = {self.key_name: key_value, "marker": marker}
        try:
            self._execute(
                "claim_marker",
                context,
                lambda: self.table.update_item(
                    Key=self._key(key_value),
                    UpdateExpression="SET #marker = :value",
                    ConditionExpression=(
                        f"attribute_exists({self.key_name}) AND "
                        "(attribute_not_exists(#marker) OR #marker <> :value)"
                    ),
                    ExpressionAttributeNames={"#marker": marker},
                    ExpressionAttributeValues={":value": value},
                ),
            )
        except ConditionFailedError:
            return False
        return True

    def release_marker(self, key_value: str, marker: str, previous: Any = None) -> None:
        """Restore a marker after a failed delivery (None removes it)."""
        context = {self.key_name: key_value, "marker": marker}
        if previous is None:
            call = lambda: self.table.update_item(  # noqa: E731
                Key=self._key(key_value),
                UpdateExpression="REMOVE #marker",
                ExpressionAttributeNames={"#marker": marker},
            )
        else:
            call = lambda: self.table.update_item(  # noqa: E731
                Key=self._key(key_value),
                UpdateExpression="SET #marker = :previous",
                ExpressionAttributeNames={"#marker": marker},
                ExpressionAttributeValues={":previous": previous},
            )
        self._execute("release_marker", context, call)

    def transition_status(self, key_value: str, from_status: str, to_status: str) -> bool:
        """Move status from one value to another; False if it no longer had from_status."""
        context = {self.key_name: key_value, "from": from_status, "to": to_status}
        try:
            self._execute(
                "transition_status",
                context,
                lambda: self.table.update_item(
                    Key=self._key(key_value),
                    UpdateExpression="SET #status = :to",
                    ConditionExpression="#status = :from",
                    ExpressionAttributeNames={"#status": "status"},
                    ExpressionAttributeValues={":from": from_status, ":to": to_status},
                ),
            )
        except ConditionFailedError:
            return False
        logger.info("Status transitioned", operation="transition_status", context=context)
        return True


class MembershipRepository(MarkerRepository):
    key_name = "membership_id"

    def __init__(self, table_name: str = "memberships", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def find_active_ending_between(self, start: datetime, end: datetime) -> List[Membership]:
        condition = Attr("status").eq("active") & Attr("end_date").between(
            format_timestamp(start), format_timestamp(end)
        )
        items = self._scan_all("find_expiring_memberships", FilterExpression=condition)
        return [Membership.from_item(item) for item in items]

    def find_active_ended_before(self, at: datetime) -> List[Membership]:
        condition = Attr("status").eq("active") & Attr("end_date").lt(format_timestamp(at))
        items = self._scan_all("find_lapsed_memberships", FilterExpression=condition)
        return [Membership.from_item(item) for item in items]


class PaymentRepository(MarkerRepository):
    key_name = "payment_id"

    def __init__(self, table_name: str = "payments", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def find_pending_created_before(self, cutoff: datetime) -> List[Payment]:
        condition = Attr("status").eq("pending") & Attr("created_at").lte(
            format_timestamp(cutoff)
        )
        items = self._scan_all("find_pending_payments", FilterExpression=condition)
        return [Payment.from_item(item) for item in items]


class AppointmentRepository(MarkerRepository):
    key_name = "appointment_id"

    def __init__(self, table_name: str = "appointments", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def find_scheduled_between(
        self, start: datetime, end: datetime, unflagged: Optional[str] = None
    ) -> List[Appointment]:
        condition = Attr("status").eq("scheduled") & Attr("start_time").between(
            format_timestamp(start), format_timestamp(end)
        )
        if unflagged:
            condition = condition & (Attr(unflagged).not_exists() | Attr(unflagged).eq(False))
        items = self._scan_all("find_upcoming_appointments", FilterExpression=condition)
        return [Appointment.from_item(item) for item in items]


class ClassRepository(MarkerRepository):
    key_name = "class_id"

    def __init__(self, table_name: str = "classes", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def find_active(self) -> List[GymClass]:
        # Schedule slots live in a list attribute, so the day match happens in Python
        items = self._scan_all("find_active_classes", FilterExpression=Attr("status").eq("active"))
        return [GymClass.from_item(item) for item in items]
