"""
Training session domain model.

One record per trainer-led session with a member. The record carries its
lifecycle status, attendance outcome, completion outcome and audit fields,
and is never deleted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from src.utils.clock import format_timestamp, parse_timestamp


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})
OPEN_STATUSES = frozenset(set(SessionStatus) - TERMINAL_STATUSES)


class AttendanceOutcome(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    NO_SHOW = "no_show"


def _as_int(value: Any) -> Optional[int]:
    # DynamoDB resource returns numbers as Decimal
    if value is None:
        return None
    if isinstance(value, Decimal):
        return int(value)
    return int(value)


@dataclass
class ExerciseRecord:
    """One exercise performed during a completed session."""

    exercise_id: str
    sets_completed: int = 0
    reps_completed: str = ""
    duration_completed: int = 0
    notes: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExerciseRecord":
        return cls(
            exercise_id=str(data["exercise_id"]),
            sets_completed=_as_int(data.get("sets_completed")) or 0,
            reps_completed=str(data.get("reps_completed") or ""),
            duration_completed=_as_int(data.get("duration_completed")) or 0,
            notes=str(data.get("notes") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exercise_id": self.exercise_id,
            "sets_completed": self.sets_completed,
            "reps_completed": self.reps_completed,
            "duration_completed": self.duration_completed,
            "notes": self.notes,
        }


@dataclass
class TrainingSession:
    """
    Training session record.

    Attributes:
        session_id: Partition key (uuid hex)
        member_id: Member attending the session
        trainer_id: Trainer of record
        programme_id: Optional training programme
        start_time: Scheduled start (UTC)
        end_time: Set when, and only when, the session is completed
        status: Lifecycle status
        attendance: Attendance outcome or None when never marked
        rating: 1-5, present only on completed sessions
        version: Incremented by every persisted write

    Invariants:
        - end_time is set iff status == completed
        - rating is set only when status == completed
        - marking attendance no_show moves status to no_show (a no_show
          session may still be cancelled or completed afterwards)
    """

    session_id: str
    member_id: str
    trainer_id: str
    start_time: datetime
    programme_id: Optional[str] = None
    end_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.SCHEDULED
    attendance: Optional[AttendanceOutcome] = None
    attendance_marked_by: Optional[str] = None
    attendance_marked_at: Optional[datetime] = None
    rating: Optional[int] = None
    remarks: str = ""
    trainer_notes: str = ""
    recommendations: str = ""
    exercises_completed: List[ExerciseRecord] = field(default_factory=list)
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    credit_consumed: bool = False
    change_requests: List[Dict[str, Any]] = field(default_factory=list)
    reminder_sent_24h: bool = False
    reminder_sent_1h: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def invariant_violations(self) -> List[str]:
        """Return descriptions of broken record invariants (empty when consistent)."""
        problems = []
        if (self.end_time is not None) != (self.status == SessionStatus.COMPLETED):
            problems.append("end_time must be set iff status is completed")
        if self.attendance == AttendanceOutcome.NO_SHOW and self.status in (
            SessionStatus.SCHEDULED,
            SessionStatus.IN_PROGRESS,
        ):
            problems.append("no_show attendance cannot leave the session scheduled or in progress")
        if self.rating is not None and self.status != SessionStatus.COMPLETED:
            problems.append("rating is only allowed on completed sessions")
        return problems

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "TrainingSession":
        """Create TrainingSession from a DynamoDB item."""
        attendance = item.get("attendance")
        return cls(
            session_id=item["session_id"],
            member_id=item["member_id"],
            trainer_id=item["trainer_id"],
            programme_id=item.get("programme_id"),
            start_time=parse_timestamp(item["start_time"]),  # type: ignore[arg-type]
            end_time=parse_timestamp(item.get("end_time")),
            status=SessionStatus(item.get("status", SessionStatus.SCHEDULED.value)),
            attendance=AttendanceOutcome(attendance) if attendance else None,
            attendance_marked_by=item.get("attendance_marked_by"),
            attendance_marked_at=parse_timestamp(item.get("attendance_marked_at")),
            rating=_as_int(item.get("rating")),
            remarks=item.get("remarks", ""),
            trainer_notes=item.get("trainer_notes", ""),
            recommendations=item.get("recommendations", ""),
            exercises_completed=[
                ExerciseRecord.from_dict(entry) for entry in item.get("exercises_completed", [])
            ],
            cancelled_by=item.get("cancelled_by"),
            cancelled_at=parse_timestamp(item.get("cancelled_at")),
            credit_consumed=bool(item.get("credit_consumed", False)),
            change_requests=list(item.get("change_requests", [])),
            reminder_sent_24h=bool(item.get("reminder_sent_24h", False)),
            reminder_sent_1h=bool(item.get("reminder_sent_1h", False)),
            created_by=item.get("created_by"),
            created_at=parse_timestamp(item.get("created_at")),
            updated_at=parse_timestamp(item.get("updated_at")),
            version=_as_int(item.get("version")) or 1,
        )

    def to_item(self) -> Dict[str, Any]:
        """
        Convert to a DynamoDB item.

        None values are dropped because the table never stores nulls.
        """
        item: Dict[str, Any] = {
            "session_id": self.session_id,
            "member_id": self.member_id,
            "trainer_id": self.trainer_id,
            "programme_id": self.programme_id,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time) if self.end_time else None,
            "status": self.status.value,
            "attendance": self.attendance.value if self.attendance else None,
            "attendance_marked_by": self.attendance_marked_by,
            "attendance_marked_at": (
                format_timestamp(self.attendance_marked_at) if self.attendance_marked_at else None
            ),
            "rating": self.rating,
            "remarks": self.remarks,
            "trainer_notes": self.trainer_notes,
            "recommendations": self.recommendations,
            "exercises_completed": [entry.to_dict() for entry in self.exercises_completed],
            "cancelled_by": self.cancelled_by,
            "cancelled_at": format_timestamp(self.cancelled_at) if self.cancelled_at else None,
            "credit_consumed": self.credit_consumed,
            "change_requests": self.change_requests,
            "reminder_sent_24h": self.reminder_sent_24h,
            "reminder_sent_1h": self.reminder_sent_1h,
            "created_by": self.created_by,
            "created_at": format_timestamp(self.created_at) if self.created_at else None,
            "updated_at": format_timestamp(self.updated_at) if self.updated_at else None,
            "version": self.version,
        }
        return {key: value for key, value in item.items() if value is not None}

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation for API responses."""
        data = self.to_item()
        for optional in ("programme_id", "end_time", "attendance", "rating"):
            data.setdefault(optional, None)
        return data
