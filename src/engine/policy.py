"""
Authorization policy for session operations.

permitted_operations() is the only place that decides who may do what. It is
evaluated once per request from the caller's role, the caller's id and the
session's ownership (trainer of record, owning member).
"""

from enum import Enum
from typing import FrozenSet, Optional

from src.domain.identity import Caller, Role
from src.domain.session import TrainingSession
from .errors import AuthorizationError


class Operation(str, Enum):
    CREATE = "create_session"
    LIST = "list_sessions"
    VIEW_STATS = "session_stats"
    VIEW = "get_session"
    MARK_ATTENDANCE = "mark_attendance"
    COMPLETE = "complete_session"
    CANCEL = "cancel_session"
    REQUEST_RESCHEDULE = "request_reschedule"
    REQUEST_CANCEL = "request_cancel"


# Operations that do not target a specific session
GENERAL_OPERATIONS = {
    Role.ADMIN: frozenset({Operation.CREATE, Operation.LIST, Operation.VIEW_STATS}),
    Role.STAFF: frozenset({Operation.CREATE, Operation.LIST, Operation.VIEW_STATS}),
    Role.TRAINER: frozenset({Operation.CREATE, Operation.LIST, Operation.VIEW_STATS}),
    Role.MEMBER: frozenset({Operation.LIST}),
}

TRAINER_OF_RECORD_OPERATIONS = frozenset(
    {Operation.VIEW, Operation.MARK_ATTENDANCE, Operation.COMPLETE, Operation.CANCEL}
)
OWNING_MEMBER_OPERATIONS = frozenset(
    {Operation.VIEW, Operation.REQUEST_RESCHEDULE, Operation.REQUEST_CANCEL}
)


def permitted_operations(
    caller: Caller, session: Optional[TrainingSession] = None
) -> FrozenSet[Operation]:
    """
    Return the operations caller may perform, on session if one is given.

    Admins act as trainer of record on every session. Staff may view any
    session but only change requests flow through them, via alerts. Members
    may only view and raise change requests on their own sessions.
    """
    allowed = set(GENERAL_OPERATIONS.get(caller.role, frozenset()))
    if session is None:
        return frozenset(allowed)

    if caller.is_admin:
        allowed |= TRAINER_OF_RECORD_OPERATIONS
    elif caller.is_staff:
        allowed.add(Operation.VIEW)
    elif caller.is_trainer and session.trainer_id == caller.user_id:
        allowed |= TRAINER_OF_RECORD_OPERATIONS
    elif caller.is_member and session.member_id == caller.user_id:
        allowed |= OWNING_MEMBER_OPERATIONS

    return frozenset(allowed)


def authorize(
    caller: Caller, operation: Operation, session: Optional[TrainingSession] = None
) -> None:
    """
    Raises:
        AuthorizationError: If the operation is not in the caller's permitted set
    """
    if operation not in permitted_operations(caller, session):
        target = f" on session {session.session_id}" if session else ""
        raise AuthorizationError(
            f"{caller.role.value} {caller.user_id} may not {operation.value}{target}"
        )
