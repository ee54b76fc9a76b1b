"""Session lifecycle engine - state machine, authorization and statistics."""

from .errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SessionEngineError,
    ValidationError,
)
from .lifecycle import LATE_GRACE_PERIOD, CompletionResult, SessionLifecycleEngine
from .policy import Operation, authorize, permitted_operations
from .statistics import SessionStatistics, compute_statistics

__all__ = [
    "AuthorizationError",
    "CompletionResult",
    "ConflictError",
    "InvalidTransitionError",
    "LATE_GRACE_PERIOD",
    "NotFoundError",
    "Operation",
    "SessionEngineError",
    "SessionLifecycleEngine",
    "SessionStatistics",
    "ValidationError",
    "authorize",
    "compute_statistics",
    "permitted_operations",
]
