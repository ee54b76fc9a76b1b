"""
Training session lifecycle engine.

States:
    scheduled -> in_progress -> completed
    scheduled -> cancelled
    scheduled -> no_show
completed and cancelled are terminal.

Every state change is one conditional write whose condition names the
statuses the change is allowed from (and, when the caller supplies one, the
version it read). A rejected operation therefore never writes, and two
racing completions of the same session can only complete it once, so at
most one credit is consumed per session.

Credit consumption and notifications are side effects of an accepted
operation. Their failures are logged and never change the operation's
outcome.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from src.database.directory import ProgrammeDirectory, UserDirectory
from src.database.dynamodb_client import SessionPage, SessionQuery, TrainingSessionRepository
from src.database.exceptions import ConditionFailedError, DynamoDBException
from src.database.ledger_repository import CreditLedgerRepository
from src.domain.identity import Caller, Role, UserRecord
from src.domain.ledger import ConsumeResult
from src.domain.session import (
    OPEN_STATUSES,
    AttendanceOutcome,
    ExerciseRecord,
    SessionStatus,
    TrainingSession,
)
from src.notifications.templates import EmailTemplateLoader
from src.utils.clock import GST, Clock, SystemClock, parse_timestamp
from src.utils.logger import get_logger, log_operation
from .errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from .policy import Operation, authorize
from .statistics import SessionStatistics, compute_statistics

logger = get_logger(__name__)

LATE_GRACE_PERIOD = timedelta(minutes=15)
DEFAULT_CANCEL_REASON = "Session cancelled"
MIN_RATING, MAX_RATING = 1, 5
MAX_PAGE_SIZE = 100
LOCAL_DISPLAY_FORMAT = "%d %b %Y, %H:%M"


@dataclass(frozen=True)
class CompletionResult:
    session: TrainingSession
    credit: ConsumeResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "credit": {
                "consumed": self.credit.consumed,
                "remaining": self.credit.remaining,
                "reason": self.credit.reason,
            },
        }


def effective_outcome(
    outcome: AttendanceOutcome, start_time: datetime, marked_at: datetime
) -> AttendanceOutcome:
    """present becomes late once marked_at is strictly past start + grace period."""
    if outcome == AttendanceOutcome.PRESENT and marked_at > start_time + LATE_GRACE_PERIOD:
        return AttendanceOutcome.LATE
    return outcome


def status_after_attendance(
    current: SessionStatus, outcome: AttendanceOutcome
) -> SessionStatus:
    if outcome == AttendanceOutcome.NO_SHOW:
        return SessionStatus.NO_SHOW
    if outcome in (AttendanceOutcome.PRESENT, AttendanceOutcome.LATE):
        if current == SessionStatus.SCHEDULED:
            return SessionStatus.IN_PROGRESS
    return current


class SessionLifecycleEngine:
    """
    Orchestrates session operations over the session store, the credit
    ledger, the user directory and the notifiers.
    """

    def __init__(
        self,
        sessions: TrainingSessionRepository,
        ledgers: CreditLedgerRepository,
        users: UserDirectory,
        programmes: Optional[ProgrammeDirectory] = None,
        notifier: Optional[Any] = None,
        staff_alerts: Optional[Any] = None,
        staff_alert_email: Optional[str] = None,
        templates: Optional[EmailTemplateLoader] = None,
        clock: Optional[Clock] = None,
        gym_timezone: timezone = GST,
    ):
        """
        Args:
            sessions: Session store
            ledgers: Credit ledger store
            users: Identity and assignment lookups
            programmes: Programme existence lookups (None skips the check)
            notifier: Email client exposing notify_template()
            staff_alerts: Slack client exposing send_staff_alert()
            staff_alert_email: Address that also receives member change requests
            templates: Loader for the Slack staff alert text
            clock: Time source (default: system clock)
            gym_timezone: Zone used when rendering times for people
        """
        self.sessions = sessions
        self.ledgers = ledgers
        self.users = users
        self.programmes = programmes
        self.notifier = notifier
        self.staff_alerts = staff_alerts
        self.staff_alert_email = staff_alert_email
        self.templates = templates
        self.clock = clock or SystemClock()
        self.gym_timezone = gym_timezone

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    @log_operation("create_session")
    def create_session(
        self,
        caller: Caller,
        member_id: str,
        start_time: Any,
        trainer_id: Optional[str] = None,
        programme_id: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> TrainingSession:
        authorize(caller, Operation.CREATE)

        errors: Dict[str, str] = {}
        if not member_id:
            errors["member_id"] = "member_id is required"
        start = self._parse_time("start_time", start_time, errors, required=True)
        if errors:
            raise ValidationError("Invalid session details", errors)

        member = self.users.get_user(member_id)
        if member is None or member.role != Role.MEMBER:
            raise NotFoundError(f"Member {member_id} not found")

        if caller.is_trainer:
            if trainer_id and trainer_id != caller.user_id:
                raise AuthorizationError("Trainers may only schedule their own sessions")
            trainer_id = caller.user_id
        else:
            trainer_id = trainer_id or member.assigned_trainer_id
            if not trainer_id:
                raise ValidationError(
                    "No trainer given and member has no assigned trainer",
                    {"trainer_id": "trainer_id is required when the member has no assigned trainer"},
                )

        trainer = self.users.get_user(trainer_id)
        if trainer is None or trainer.role != Role.TRAINER:
            raise NotFoundError(f"Trainer {trainer_id} not found")

        if programme_id and self.programmes is not None and not self.programmes.exists(programme_id):
            raise NotFoundError(f"Programme {programme_id} not found")

        now = self.clock.now()
        session = TrainingSession(
            session_id=uuid.uuid4().hex,
            member_id=member_id,
            trainer_id=trainer_id,
            programme_id=programme_id or None,
            start_time=start,  # type: ignore[arg-type]
            remarks=remarks or "",
            created_by=caller.user_id,
            created_at=now,
            updated_at=now,
        )
        self.sessions.create_session(session)

        self._send_email(
            member.email,
            "session_scheduled",
            member_name=member.display_name,
            trainer_name=trainer.display_name,
            start_local=self._local(session.start_time),
            remarks=session.remarks,
        )
        return session

    @log_operation("mark_attendance")
    def mark_attendance(
        self,
        caller: Caller,
        session_id: str,
        outcome: Any,
        expected_version: Optional[int] = None,
    ) -> TrainingSession:
        requested = self._parse_enum(AttendanceOutcome, "outcome", outcome)
        self._check_version_arg(expected_version)

        session = self._load(session_id)
        authorize(caller, Operation.MARK_ATTENDANCE, session)
        if session.is_terminal:
            raise InvalidTransitionError(
                f"Cannot mark attendance on a {session.status.value} session"
            )

        now = self.clock.now()
        recorded = effective_outcome(requested, session.start_time, now)
        updates = {
            "attendance": recorded,
            "attendance_marked_by": caller.user_id,
            "attendance_marked_at": now,
            "status": status_after_attendance(session.status, recorded),
        }

        updated = self._write(session_id, updates, OPEN_STATUSES, expected_version)
        if recorded != requested:
            logger.info(
                "Attendance recorded as late",
                operation="mark_attendance",
                context={"session_id": session_id, "minutes_after_start": _minutes(now - session.start_time)},
            )
        return updated

    @log_operation("complete_session")
    def complete_session(
        self,
        caller: Caller,
        session_id: str,
        rating: Any,
        remarks: Optional[str] = None,
        exercises: Optional[Iterable[Dict[str, Any]]] = None,
        trainer_notes: Optional[str] = None,
        recommendations: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CompletionResult:
        checked_rating = self._parse_rating(rating)
        records = self._parse_exercises(exercises)
        self._check_version_arg(expected_version)

        session = self._load(session_id)
        authorize(caller, Operation.COMPLETE, session)
        if session.is_terminal:
            raise InvalidTransitionError(f"Session is already {session.status.value}")

        now = self.clock.now()
        updates: Dict[str, Any] = {
            "status": SessionStatus.COMPLETED,
            "end_time": now,
            "rating": checked_rating,
            "exercises_completed": records,
        }
        if remarks is not None:
            updates["remarks"] = remarks
        if trainer_notes is not None:
            updates["trainer_notes"] = trainer_notes
        if recommendations is not None:
            updates["recommendations"] = recommendations
        if session.attendance is None:
            # Unmarked attendance counts as present once the session is completed
            updates["attendance"] = AttendanceOutcome.PRESENT
            updates["attendance_marked_by"] = caller.user_id
            updates["attendance_marked_at"] = now

        completed = self._write(session_id, updates, OPEN_STATUSES, expected_version)

        credit = self._consume_credit(completed.member_id, now)
        if credit.consumed:
            try:
                completed = self.sessions.update_session(
                    session_id,
                    {"credit_consumed": True},
                    now,
                    allowed_statuses=[SessionStatus.COMPLETED],
                )
            except DynamoDBException as exc:
                logger.error(
                    "Credit consumed but flag not recorded",
                    operation="complete_session",
                    context={"session_id": session_id, "member_id": completed.member_id},
                    error=str(exc),
                )

        member = self._user(completed.member_id)
        trainer = self._user(completed.trainer_id)
        self._send_email(
            member.email if member else None,
            "session_completed",
            member_name=_name(member, completed.member_id),
            trainer_name=_name(trainer, completed.trainer_id),
            start_local=self._local(completed.start_time),
            rating=checked_rating,
            recommendations=completed.recommendations,
            credit_consumed=credit.consumed,
            remaining=credit.remaining,
        )
        return CompletionResult(session=completed, credit=credit)

    @log_operation("cancel_session")
    def cancel_session(
        self,
        caller: Caller,
        session_id: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> TrainingSession:
        self._check_version_arg(expected_version)

        session = self._load(session_id)
        authorize(caller, Operation.CANCEL, session)
        if session.status == SessionStatus.COMPLETED:
            raise InvalidTransitionError("Cannot cancel a completed session")
        if session.status == SessionStatus.CANCELLED:
            raise InvalidTransitionError("Session is already cancelled")

        now = self.clock.now()
        updates = {
            "status": SessionStatus.CANCELLED,
            "remarks": reason or DEFAULT_CANCEL_REASON,
            "cancelled_by": caller.user_id,
            "cancelled_at": now,
        }
        return self._write(session_id, updates, OPEN_STATUSES, expected_version)

    @log_operation("request_reschedule")
    def request_reschedule(
        self,
        caller: Caller,
        session_id: str,
        reason: Optional[str] = None,
        proposed_start: Any = None,
    ) -> TrainingSession:
        errors: Dict[str, str] = {}
        proposed = self._parse_time("proposed_start", proposed_start, errors, required=False)
        if errors:
            raise ValidationError("Invalid reschedule request", errors)
        return self._request_change(
            caller, session_id, Operation.REQUEST_RESCHEDULE, "reschedule", reason, proposed
        )

    @log_operation("request_cancel")
    def request_cancel(
        self, caller: Caller, session_id: str, reason: Optional[str] = None
    ) -> TrainingSession:
        return self._request_change(
            caller, session_id, Operation.REQUEST_CANCEL, "cancel", reason, None
        )

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_session(self, caller: Caller, session_id: str) -> TrainingSession:
        session = self._load(session_id)
        authorize(caller, Operation.VIEW, session)
        return session

    def list_sessions(self, caller: Caller, query: Optional[SessionQuery] = None) -> SessionPage:
        """List sessions visible to caller. Trainers and members are scoped to their own."""
        authorize(caller, Operation.LIST)
        query = query or SessionQuery()
        self._check_paging(query)
        if caller.is_trainer:
            query.trainer_id = caller.user_id
        elif caller.is_member:
            query.member_id = caller.user_id
        return self.sessions.list_sessions(query)

    def list_trainer_sessions(
        self, caller: Caller, trainer_id: str, query: Optional[SessionQuery] = None
    ) -> SessionPage:
        if caller.is_member or (caller.is_trainer and caller.user_id != trainer_id):
            raise AuthorizationError("Trainers may only list their own sessions")
        authorize(caller, Operation.LIST)
        query = query or SessionQuery()
        self._check_paging(query)
        query.trainer_id = trainer_id
        return self.sessions.list_sessions(query)

    def list_member_sessions(
        self, caller: Caller, member_id: str, query: Optional[SessionQuery] = None
    ) -> SessionPage:
        if caller.is_member and caller.user_id != member_id:
            raise AuthorizationError("Members may only list their own sessions")
        authorize(caller, Operation.LIST)
        query = query or SessionQuery()
        self._check_paging(query)
        query.member_id = member_id
        if caller.is_trainer:
            query.trainer_id = caller.user_id
        return self.sessions.list_sessions(query)

    def statistics(
        self,
        caller: Caller,
        trainer_id: Optional[str] = None,
        start_from: Any = None,
        start_to: Any = None,
    ) -> SessionStatistics:
        """Counts by status and rating aggregates; trainers only see their own."""
        authorize(caller, Operation.VIEW_STATS)
        errors: Dict[str, str] = {}
        query = SessionQuery(
            trainer_id=caller.user_id if caller.is_trainer else trainer_id,
            start_from=self._parse_time("start_from", start_from, errors, required=False),
            start_to=self._parse_time("start_to", start_to, errors, required=False),
            page=1,
            limit=1,
        )
        if errors:
            raise ValidationError("Invalid statistics filters", errors)

        sessions = self._all_pages(query)
        names = {}
        for tid in {s.trainer_id for s in sessions}:
            trainer = self._user(tid)
            if trainer:
                names[tid] = trainer.display_name
        return compute_statistics(sessions, names)

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _all_pages(self, query: SessionQuery) -> List[TrainingSession]:
        query.page, query.limit = 1, MAX_PAGE_SIZE
        first = self.sessions.list_sessions(query)
        sessions = list(first.sessions)
        for page in range(2, first.pages + 1):
            query.page = page
            sessions.extend(self.sessions.list_sessions(query).sessions)
        return sessions

    def _load(self, session_id: str) -> TrainingSession:
        if not session_id:
            raise ValidationError("session_id is required", {"session_id": "required"})
        session = self.sessions.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def _write(
        self,
        session_id: str,
        updates: Dict[str, Any],
        allowed: Iterable[SessionStatus],
        expected_version: Optional[int],
    ) -> TrainingSession:
        try:
            return self.sessions.update_session(
                session_id,
                updates,
                self.clock.now(),
                allowed_statuses=allowed,
                expected_version=expected_version,
            )
        except ConditionFailedError:
            raise self._explain_rejection(session_id, expected_version)

    def _explain_rejection(self, session_id: str, expected_version: Optional[int]) -> Exception:
        """Re-read after a failed conditional write to report which guard failed."""
        current = self.sessions.get_session(session_id)
        if current is None:
            return NotFoundError(f"Session {session_id} not found")
        if expected_version is not None and current.version != expected_version:
            return ConflictError(
                f"Session {session_id} is at version {current.version}, "
                f"not {expected_version}"
            )
        if current.is_terminal:
            return InvalidTransitionError(f"Session is already {current.status.value}")
        return ConflictError(f"Session {session_id} changed concurrently; retry")

    def _consume_credit(self, member_id: str, at: datetime) -> ConsumeResult:
        try:
            return self.ledgers.consume_one(member_id, at)
        except DynamoDBException as exc:
            logger.error(
                "Ledger unavailable; credit not consumed",
                operation="consume_one",
                context={"member_id": member_id},
                error=str(exc),
            )
            return ConsumeResult(consumed=False, reason="ledger_unavailable")

    def _request_change(
        self,
        caller: Caller,
        session_id: str,
        operation: Operation,
        request_type: str,
        reason: Optional[str],
        proposed_start: Optional[datetime],
    ) -> TrainingSession:
        session = self._load(session_id)
        authorize(caller, operation, session)
        if session.status != SessionStatus.SCHEDULED:
            raise InvalidTransitionError(
                f"Changes can only be requested while scheduled (session is {session.status.value})"
            )

        now = self.clock.now()
        request: Dict[str, Any] = {
            "request_id": uuid.uuid4().hex,
            "type": request_type,
            "requested_by": caller.user_id,
            "requested_at": now,
            "reason": reason or "",
        }
        if proposed_start is not None:
            request["proposed_start"] = proposed_start

        try:
            updated = self.sessions.append_change_request(
                session_id, request, required_status=SessionStatus.SCHEDULED
            )
        except ConditionFailedError:
            raise self._explain_rejection(session_id, None)

        self._alert_staff(updated, request_type, reason, proposed_start)
        return updated

    def _alert_staff(
        self,
        session: TrainingSession,
        request_type: str,
        reason: Optional[str],
        proposed_start: Optional[datetime],
    ) -> None:
        member = self._user(session.member_id)
        trainer = self._user(session.trainer_id)
        context = {
            "request_type": request_type,
            "member_name": _name(member, session.member_id),
            "trainer_name": _name(trainer, session.trainer_id),
            "session_id": session.session_id,
            "start_local": self._local(session.start_time),
            "proposed_start": self._local(proposed_start) if proposed_start else None,
            "reason": reason,
        }

        if self.staff_alerts is not None:
            try:
                if self.templates is not None:
                    text = self.templates.render_text("slack_change_request", **context)
                else:
                    text = (
                        f"{context['member_name']} requested a {request_type} "
                        f"for session {session.session_id}"
                    )
                self.staff_alerts.send_staff_alert(f"Session {request_type} requested", text)
            except Exception as exc:  # noqa: BLE001 - alerts are best-effort
                logger.warning(
                    "Staff Slack alert failed",
                    operation="alert_staff",
                    context={"session_id": session.session_id},
                    error=str(exc),
                )

        if self.staff_alert_email:
            self._send_email(self.staff_alert_email, "session_change_request", **context)

    def _send_email(self, recipient: Optional[str], template: str, **context: Any) -> None:
        if self.notifier is None:
            return
        try:
            result = self.notifier.notify_template(recipient, template, **context)
        except Exception as exc:  # noqa: BLE001 - notifications never fail an operation
            logger.warning(
                "Notification failed",
                operation="notify",
                context={"template": template},
                error=str(exc),
            )
            return
        if not result.success:
            logger.warning(
                "Notification not delivered",
                operation="notify",
                context={"template": template},
                error=result.error,
            )

    def _user(self, user_id: str) -> Optional[UserRecord]:
        try:
            return self.users.get_user(user_id)
        except DynamoDBException as exc:
            logger.warning(
                "User lookup failed",
                operation="get_user",
                context={"user_id": user_id},
                error=str(exc),
            )
            return None

    def _local(self, value: datetime) -> str:
        return value.astimezone(self.gym_timezone).strftime(LOCAL_DISPLAY_FORMAT)

    @staticmethod
    def _parse_time(
        field_name: str, value: Any, errors: Dict[str, str], required: bool
    ) -> Optional[datetime]:
        if value is None or value == "":
            if required:
                errors[field_name] = f"{field_name} is required"
            return None
        try:
            return parse_timestamp(value)
        except (TypeError, ValueError):
            errors[field_name] = f"{field_name} must be an ISO-8601 timestamp"
            return None

    @staticmethod
    def _parse_enum(enum_cls: Any, field_name: str, value: Any) -> Any:
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ValidationError(
                f"Invalid {field_name}", {field_name: f"must be one of: {allowed}"}
            )

    @staticmethod
    def _parse_rating(rating: Any) -> int:
        if isinstance(rating, bool) or not isinstance(rating, (int, str)):
            valid = False
        else:
            try:
                rating = int(rating)
                valid = MIN_RATING <= rating <= MAX_RATING
            except ValueError:
                valid = False
        if not valid:
            raise ValidationError(
                "Invalid rating",
                {"rating": f"rating must be an integer between {MIN_RATING} and {MAX_RATING}"},
            )
        return rating

    @staticmethod
    def _parse_exercises(exercises: Optional[Iterable[Dict[str, Any]]]) -> List[ExerciseRecord]:
        records = []
        for index, entry in enumerate(exercises or []):
            try:
                records.append(ExerciseRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                raise ValidationError(
                    "Invalid exercise record",
                    {f"exercises[{index}]": "exercise_id is required; counts must be integers"},
                )
        return records

    @staticmethod
    def _check_version_arg(expected_version: Optional[int]) -> None:
        if expected_version is None:
            return
        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            raise ValidationError(
                "Invalid expected_version", {"expected_version": "must be an integer"}
            )

    @staticmethod
    def _check_paging(query: SessionQuery) -> None:
        errors = {}
        if query.page < 1:
            errors["page"] = "page must be >= 1"
        if not 1 <= query.limit <= MAX_PAGE_SIZE:
            errors["limit"] = f"limit must be between 1 and {MAX_PAGE_SIZE}"
        if errors:
            raise ValidationError("Invalid pagination", errors)


def _name(user: Optional[UserRecord], fallback: str) -> str:
    return user.display_name if user else fallback


def _minutes(delta: timedelta) -> float:
    return round(delta.total_seconds() / 60, 2)
