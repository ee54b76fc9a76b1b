"""Database module - DynamoDB repository pattern implementation."""

from .directory import ProgrammeDirectory, UserDirectory
from .dynamodb_client import SessionPage, SessionQuery, TrainingSessionRepository
from .exceptions import (
    ConditionFailedError,
    DynamoDBException,
    NetworkError,
    PermissionError,
    ThrottlingError,
)
from .ledger_repository import CreditLedgerRepository
from .reminder_repository import (
    AppointmentRepository,
    ClassRepository,
    MembershipRepository,
    PaymentRepository,
)

__all__ = [
    "AppointmentRepository",
    "ClassRepository",
    "ConditionFailedError",
    "CreditLedgerRepository",
    "DynamoDBException",
    "MembershipRepository",
    "NetworkError",
    "PaymentRepository",
    "PermissionError",
    "ProgrammeDirectory",
    "SessionPage",
    "SessionQuery",
    "ThrottlingError",
    "TrainingSessionRepository",
    "UserDirectory",
]
