"""Domain models - core business entities."""

from .identity import Caller, Role, UserRecord
from .ledger import ConsumeResult, CreditLedger
from .reminders import Appointment, GymClass, Membership, Payment
from .session import AttendanceOutcome, ExerciseRecord, SessionStatus, TrainingSession

__all__ = [
    "Appointment",
    "AttendanceOutcome",
    "Caller",
    "ConsumeResult",
    "CreditLedger",
    "ExerciseRecord",
    "GymClass",
    "Membership",
    "Payment",
    "Role",
    "SessionStatus",
    "TrainingSession",
    "UserRecord",
]
