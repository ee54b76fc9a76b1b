"""
Session-credit ledger persistence.

Consumption is a single conditional increment evaluated by DynamoDB, so two
completions racing for the same member's last credit cannot both succeed and
neither can overwrite the other's increment.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional, Union

from src.domain.ledger import LEDGER_ACTIVE, ConsumeResult, CreditLedger
from src.utils.clock import GST, format_timestamp, local_day_bounds
from src.utils.logger import get_logger
from .dynamodb_client import DynamoRepository
from .exceptions import ConditionFailedError

logger = get_logger(__name__)


class CreditLedgerRepository(DynamoRepository):
    """
    Repository for member credit ledgers.

    Table Schema:
        Partition Key: member_id (one active ledger per member)
    """

    def __init__(
        self, table_name: str = "credit_ledgers", gym_timezone: timezone = GST, **kwargs: Any
    ):
        super().__init__(table_name, **kwargs)
        self.gym_timezone = gym_timezone

    def get_ledger(self, member_id: str) -> Optional[CreditLedger]:
        response = self._execute(
            "get_ledger",
            {"member_id": member_id},
            lambda: self.table.get_item(Key={"member_id": member_id}, ConsistentRead=True),
        )
        item = response.get("Item")
        return CreditLedger.from_item(item) if item else None

    def put_ledger(
        self,
        member_id: str,
        total: int,
        validity_start: Union[date, datetime],
        validity_end: Union[date, datetime],
        used: int = 0,
        status: str = LEDGER_ACTIVE,
        source: str = "package",
    ) -> CreditLedger:
        """
        Provision or renew a member's ledger (billing and seed scripts).

        Plain dates are expanded to whole local days: the start date begins at
        local midnight and the end date is inclusive through its last instant.
        """
        if used < 0 or total < 0 or used > total:
            raise ValueError(f"Invalid ledger totals: used={used}, total={total}")

        ledger = CreditLedger(
            member_id=member_id,
            total=total,
            used=used,
            validity_start=_window_edge(validity_start, self.gym_timezone, start=True),
            validity_end=_window_edge(validity_end, self.gym_timezone, start=False),
            status=status,
            source=source,
        )
        self._execute(
            "put_ledger",
            {"member_id": member_id, "total": total},
            lambda: self.table.put_item(Item=ledger.to_item()),
        )
        logger.info(
            "Ledger provisioned",
            operation="put_ledger",
            context={"member_id": member_id, "total": total, "used": used},
        )
        return ledger

    def is_within_validity(self, member_id: str, at: datetime) -> bool:
        """True iff an active ledger exists and start <= at <= end."""
        ledger = self.get_ledger(member_id)
        return ledger is not None and ledger.is_within_validity(at)

    def consume_one(self, member_id: str, at: datetime) -> ConsumeResult:
        """
        Consume one credit if the ledger is active, in window and not exhausted.

        Implemented as one conditional UpdateItem. A failed condition is a soft
        outcome: the result reports consumed=False and the reason is logged.
        """
        now = format_timestamp(at)
        context = {"member_id": member_id, "at": now}

        try:
            response = self._execute(
                "consume_one",
                context,
                lambda: self.table.update_item(
                    Key={"member_id": member_id},
                    UpdateExpression="SET #used = #used + :one, #updated = :now",
                    ConditionExpression=(
                        "attribute_exists(member_id) AND #status = :active AND "
                        "#used < #total AND #start <= :now AND #end >= :now"
                    ),
                    ExpressionAttributeNames={
                        "#used": "used",
                        "#total": "total",
                        "#status": "status",
                        "#start": "validity_start",
                        "#end": "validity_end",
                        "#updated": "updated_at",
                    },
                    ExpressionAttributeValues={
                        ":one": 1,
                        ":active": LEDGER_ACTIVE,
                        ":now": now,
                    },
                    ReturnValues="ALL_NEW",
                ),
            )
        except ConditionFailedError:
            reason = self._diagnose(member_id, at)
            logger.info(
                "Credit not consumed",
                operation="consume_one",
                context={**context, "reason": reason},
            )
            return ConsumeResult(consumed=False, reason=reason)

        ledger = CreditLedger.from_item(response["Attributes"])
        logger.info(
            "Credit consumed",
            operation="consume_one",
            context={**context, "used": ledger.used, "remaining": ledger.remaining},
        )
        return ConsumeResult(consumed=True, remaining=ledger.remaining)

    def _diagnose(self, member_id: str, at: datetime) -> str:
        """Explain a failed consumption for logs. Read-only and advisory."""
        ledger = self.get_ledger(member_id)
        if ledger is None:
            return "no_ledger"
        if ledger.status != LEDGER_ACTIVE:
            return "inactive"
        if not ledger.is_within_validity(at):
            return "outside_validity"
        if ledger.used >= ledger.total:
            return "exhausted"
        return "condition_failed"


def _window_edge(value: Union[date, datetime], tz: timezone, start: bool) -> datetime:
    if isinstance(value, datetime):
        return value
    day_start, day_end = local_day_bounds(value, tz)
    return day_start if start else day_end
