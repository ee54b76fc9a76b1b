"""
Session-credit ledger domain model.

A member's prepaid balance of training sessions (from a package or a
membership), owned and provisioned by billing and consumed one unit per
qualifying session completion.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from src.utils.clock import ensure_utc, format_timestamp, parse_timestamp

LEDGER_ACTIVE = "active"


@dataclass
class CreditLedger:
    """
    Attributes:
        member_id: Partition key; one active ledger per member
        total: Credits granted
        used: Credits consumed so far
        validity_start: First instant credits may be consumed
        validity_end: Last instant credits may be consumed (inclusive)
        status: "active" or a billing status (expired, suspended, ...)
        source: "package" or "membership"
    """

    member_id: str
    total: int
    used: int
    validity_start: datetime
    validity_end: datetime
    status: str = LEDGER_ACTIVE
    source: str = "package"
    updated_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return self.total - self.used

    def is_within_validity(self, at: datetime) -> bool:
        at = ensure_utc(at)
        return (
            self.status == LEDGER_ACTIVE
            and ensure_utc(self.validity_start) <= at <= ensure_utc(self.validity_end)
        )

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "CreditLedger":
        return cls(
            member_id=item["member_id"],
            total=int(Decimal(item.get("total", 0))),
            used=int(Decimal(item.get("used", 0))),
            validity_start=parse_timestamp(item["validity_start"]),  # type: ignore[arg-type]
            validity_end=parse_timestamp(item["validity_end"]),  # type: ignore[arg-type]
            status=item.get("status", LEDGER_ACTIVE),
            source=item.get("source", "package"),
            updated_at=parse_timestamp(item.get("updated_at")),
        )

    def to_item(self) -> Dict[str, Any]:
        item = {
            "member_id": self.member_id,
            "total": self.total,
            "used": self.used,
            "validity_start": format_timestamp(self.validity_start),
            "validity_end": format_timestamp(self.validity_end),
            "status": self.status,
            "source": self.source,
        }
        if self.updated_at:
            item["updated_at"] = format_timestamp(self.updated_at)
        return item


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of a consume-one-credit attempt. Never raised, only reported."""

    consumed: bool
    remaining: Optional[int] = None
    reason: Optional[str] = None
