"""
Records scanned by the daily reminder sweep.

These entities belong to the membership, billing, appointment and class
services. The sweep only reads them and sets reminder markers (and flips
lapsed memberships to expired).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from src.utils.clock import parse_timestamp


@dataclass
class Membership:
    membership_id: str
    member_id: str
    end_date: datetime
    status: str = "active"
    plan_name: str = "Membership"
    expiring_notice_on: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Membership":
        return cls(
            membership_id=item["membership_id"],
            member_id=item["member_id"],
            end_date=parse_timestamp(item["end_date"]),  # type: ignore[arg-type]
            status=item.get("status", "active"),
            plan_name=item.get("plan_name") or "Membership",
            expiring_notice_on=item.get("expiring_notice_on"),
        )


@dataclass
class Payment:
    payment_id: str
    member_id: str
    amount: Decimal
    created_at: datetime
    status: str = "pending"
    receipt_number: Optional[str] = None
    reminder_notice_on: Optional[str] = None
    overdue_notice_on: Optional[str] = None

    @property
    def invoice_number(self) -> str:
        return self.receipt_number or f"INV-{self.payment_id[-6:]}"

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Payment":
        return cls(
            payment_id=item["payment_id"],
            member_id=item["member_id"],
            amount=Decimal(str(item.get("amount", 0))),
            created_at=parse_timestamp(item["created_at"]),  # type: ignore[arg-type]
            status=item.get("status", "pending"),
            receipt_number=item.get("receipt_number"),
            reminder_notice_on=item.get("reminder_notice_on"),
            overdue_notice_on=item.get("overdue_notice_on"),
        )


@dataclass
class Appointment:
    appointment_id: str
    client_id: str
    staff_id: str
    start_time: datetime
    status: str = "scheduled"
    location: str = ""

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Appointment":
        return cls(
            appointment_id=item["appointment_id"],
            client_id=item["client_id"],
            staff_id=item["staff_id"],
            start_time=parse_timestamp(item["start_time"]),  # type: ignore[arg-type]
            status=item.get("status", "scheduled"),
            location=item.get("location", ""),
        )


@dataclass
class GymClass:
    class_id: str
    name: str
    schedule: List[datetime]
    member_ids: List[str]
    status: str = "active"
    trainer_id: Optional[str] = None
    location: str = "Main Gym"
    reminder_notice_on: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "GymClass":
        return cls(
            class_id=item["class_id"],
            name=item.get("name", "Class"),
            schedule=[parse_timestamp(slot) for slot in item.get("schedule", [])],  # type: ignore[misc]
            member_ids=list(item.get("member_ids", [])),
            status=item.get("status", "active"),
            trainer_id=item.get("trainer_id"),
            location=item.get("location") or "Main Gym",
            reminder_notice_on=item.get("reminder_notice_on"),
        )
