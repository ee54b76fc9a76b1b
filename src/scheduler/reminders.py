"""
Daily reminder sweep.

Sub-sweeps run independently: an exception in one is logged and recorded in
its SweepResult, and the remaining sub-sweeps still run. Within a sub-sweep
every record is handled in isolation, so one failed send only counts as one
failure.

Once-per-event guarantees come from conditional marker writes claimed before
sending and released again when the send fails:
    appointments, sessions   reminder_sent_<h>h flags, once per threshold
    memberships, payments,   <kind>_notice_on = local date, at most once per
    classes                  day (when dedupe_same_day is on)
    lapsed memberships       the active -> expired status flip itself
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from boto3.dynamodb.conditions import Attr

from src.config.settings import ReminderPolicy
from src.database.directory import UserDirectory
from src.database.dynamodb_client import TrainingSessionRepository
from src.database.reminder_repository import (
    AppointmentRepository,
    ClassRepository,
    MarkerRepository,
    MembershipRepository,
    PaymentRepository,
)
from src.domain.identity import UserRecord
from src.domain.session import SessionStatus
from src.utils.clock import GST, Clock, SystemClock, format_timestamp, local_date, local_day_bounds
from src.utils.logger import get_logger, log_operation

logger = get_logger(__name__)

LOCAL_DISPLAY_FORMAT = "%d %b %Y, %H:%M"


@dataclass
class SweepResult:
    name: str
    scanned: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReminderScheduler:
    """Runs the membership, payment, appointment, class and session reminder sweeps."""

    def __init__(
        self,
        users: UserDirectory,
        notifier: Any,
        sessions: Optional[TrainingSessionRepository] = None,
        memberships: Optional[MembershipRepository] = None,
        payments: Optional[PaymentRepository] = None,
        appointments: Optional[AppointmentRepository] = None,
        classes: Optional[ClassRepository] = None,
        policy: Optional[ReminderPolicy] = None,
        clock: Optional[Clock] = None,
        gym_timezone: timezone = GST,
    ):
        """
        Args:
            users: Resolves recipient emails and names
            notifier: Email client exposing notify_template()
            sessions..classes: Source repositories; a missing one skips its sweep
            policy: Reminder thresholds
            clock: Time source (default: system clock)
            gym_timezone: Zone defining "today" and "tomorrow"
        """
        self.users = users
        self.notifier = notifier
        self.sessions = sessions
        self.memberships = memberships
        self.payments = payments
        self.appointments = appointments
        self.classes = classes
        self.policy = policy or ReminderPolicy()
        self.clock = clock or SystemClock()
        self.gym_timezone = gym_timezone

    @log_operation("reminder_sweep")
    def run_all(self) -> List[SweepResult]:
        sweeps: List[Callable[[], SweepResult]] = [
            self.membership_expiring,
            self.membership_expired,
            self.payment_reminders,
            self.payment_overdue,
            self.appointment_reminders,
            self.class_reminders,
            self.session_reminders,
        ]
        results = []
        for sweep in sweeps:
            try:
                results.append(sweep())
            except Exception as exc:  # noqa: BLE001 - one sweep must not stop the others
                logger.error(
                    "Reminder sub-sweep failed",
                    operation="reminder_sweep",
                    context={"sweep": sweep.__name__},
                    error=str(exc),
                )
                results.append(SweepResult(name=sweep.__name__, failed=1, error=str(exc)))

        logger.info(
            "Reminder sweep finished",
            operation="reminder_sweep",
            context={"results": [result.to_dict() for result in results]},
        )
        return results

    # ------------------------------------------------------------------ #
    # Memberships
    # ------------------------------------------------------------------ #

    def membership_expiring(self) -> SweepResult:
        result = SweepResult(name="membership_expiring")
        if self.memberships is None:
            return result

        now = self.clock.now()
        horizon = now + timedelta(days=self.policy.membership_lookahead_days)
        for membership in self.memberships.find_active_ending_between(now, horizon):
            result.scanned += 1
            days_left = max(0, math.ceil((membership.end_date - now).total_seconds() / 86400))
            self._once_per_day(
                result,
                self.memberships,
                membership.membership_id,
                "expiring_notice_on",
                membership.expiring_notice_on,
                lambda m=membership, d=days_left: self._send_to_user(
                    m.member_id,
                    "membership_expiring",
                    plan_name=m.plan_name,
                    end_local=self._local(m.end_date),
                    days_left=d,
                ),
            )
        return result

    def membership_expired(self) -> SweepResult:
        result = SweepResult(name="membership_expired")
        if self.memberships is None:
            return result

        now = self.clock.now()
        for membership in self.memberships.find_active_ended_before(now):
            result.scanned += 1
            try:
                # Only the run that flips the status sends the notice
                if not self.memberships.transition_status(
                    membership.membership_id, "active", "expired"
                ):
                    result.skipped += 1
                    continue
                delivered = self._send_to_user(
                    membership.member_id,
                    "membership_expired",
                    plan_name=membership.plan_name,
                    end_local=self._local(membership.end_date),
                )
                self._count(result, delivered)
            except Exception as exc:  # noqa: BLE001
                self._record_failure(result, membership.membership_id, exc)
        return result

    # ------------------------------------------------------------------ #
    # Payments
    # ------------------------------------------------------------------ #

    def payment_reminders(self) -> SweepResult:
        return self._payment_sweep(
            "payment_reminders",
            self.policy.payment_reminder_after_days,
            "reminder_notice_on",
            "payment_reminder",
        )

    def payment_overdue(self) -> SweepResult:
        return self._payment_sweep(
            "payment_overdue",
            self.policy.payment_overdue_after_days,
            "overdue_notice_on",
            "payment_overdue",
        )

    def _payment_sweep(
        self, name: str, after_days: int, marker: str, template: str
    ) -> SweepResult:
        result = SweepResult(name=name)
        if self.payments is None:
            return result

        now = self.clock.now()
        cutoff = now - timedelta(days=after_days)
        for payment in self.payments.find_pending_created_before(cutoff):
            result.scanned += 1
            self._once_per_day(
                result,
                self.payments,
                payment.payment_id,
                marker,
                getattr(payment, marker),
                lambda p=payment: self._send_to_user(
                    p.member_id,
                    template,
                    invoice_number=p.invoice_number,
                    amount=f"{p.amount:.2f}",
                    created_local=self._local(p.created_at),
                    days_overdue=(now - p.created_at).days,
                ),
            )
        return result

    # ------------------------------------------------------------------ #
    # Appointments and training sessions
    # ------------------------------------------------------------------ #

    def appointment_reminders(self) -> SweepResult:
        result = SweepResult(name="appointment_reminders")
        if self.appointments is None:
            return result

        now = self.clock.now()
        for hours in sorted(self.policy.appointment_thresholds_hours, reverse=True):
            flag = f"reminder_sent_{hours}h"
            window_end = now + timedelta(hours=hours)
            for appointment in self.appointments.find_scheduled_between(now, window_end, flag):
                result.scanned += 1
                try:
                    if not self.appointments.claim_marker(appointment.appointment_id, flag, True):
                        result.skipped += 1
                        continue
                    delivered = self._send_claimed(
                        lambda a=appointment: self.appointments.release_marker(
                            a.appointment_id, flag
                        ),
                        lambda a=appointment, h=hours: self._send_appointment_reminder(a, h),
                    )
                    self._count(result, delivered)
                except Exception as exc:  # noqa: BLE001
                    self._record_failure(result, appointment.appointment_id, exc)
        return result

    def session_reminders(self) -> SweepResult:
        result = SweepResult(name="session_reminders")
        if self.sessions is None:
            return result

        now = self.clock.now()
        for hours in sorted(self.policy.session_thresholds_hours, reverse=True):
            flag = f"reminder_sent_{hours}h"
            condition = (
                Attr("status").eq(SessionStatus.SCHEDULED.value)
                & Attr("start_time").between(
                    format_timestamp(now), format_timestamp(now + timedelta(hours=hours))
                )
                & (Attr(flag).not_exists() | Attr(flag).eq(False))
            )
            for session in self.sessions.scan_sessions(condition):
                result.scanned += 1
                try:
                    if not self.sessions.claim_flag(session.session_id, flag):
                        result.skipped += 1
                        continue
                    delivered = self._send_claimed(
                        lambda s=session: self.sessions.release_flag(s.session_id, flag),
                        lambda s=session, h=hours: self._send_session_reminder(s, h),
                    )
                    self._count(result, delivered)
                except Exception as exc:  # noqa: BLE001
                    self._record_failure(result, session.session_id, exc)
        return result

    def _send_appointment_reminder(self, appointment: Any, hours: int) -> bool:
        staff = self.users.get_user(appointment.staff_id)
        return self._send_to_user(
            appointment.client_id,
            f"appointment_reminder_{hours}h",
            name_field="client_name",
            staff_name=staff.display_name if staff else "our team",
            start_local=self._local(appointment.start_time),
            location=appointment.location,
        )

    def _send_session_reminder(self, session: Any, hours: int) -> bool:
        trainer = self.users.get_user(session.trainer_id)
        return self._send_to_user(
            session.member_id,
            f"session_reminder_{hours}h",
            trainer_name=trainer.display_name if trainer else "your trainer",
            start_local=self._local(session.start_time),
        )

    # ------------------------------------------------------------------ #
    # Classes
    # ------------------------------------------------------------------ #

    def class_reminders(self) -> SweepResult:
        """Notify every enrolled member of classes with a slot on the next local day(s)."""
        result = SweepResult(name="class_reminders")
        if self.classes is None:
            return result

        now = self.clock.now()
        first_day = local_date(now, self.gym_timezone) + timedelta(days=1)
        last_day = first_day + timedelta(days=self.policy.class_lookahead_days - 1)
        window_start, _ = local_day_bounds(first_day, self.gym_timezone)
        _, window_end = local_day_bounds(last_day, self.gym_timezone)

        for gym_class in self.classes.find_active():
            slots = sorted(slot for slot in gym_class.schedule if window_start <= slot <= window_end)
            if not slots:
                continue
            result.scanned += 1
            self._once_per_day(
                result,
                self.classes,
                gym_class.class_id,
                "reminder_notice_on",
                gym_class.reminder_notice_on,
                lambda c=gym_class, slot=slots[0]: self._notify_class_members(c, slot, result),
                count_delivery=False,
            )
        return result

    def _notify_class_members(self, gym_class: Any, slot: datetime, result: SweepResult) -> bool:
        """Send to each enrolled member; True when at least one send succeeded."""
        any_delivered = False
        for member_id in gym_class.member_ids:
            try:
                delivered = self._send_to_user(
                    member_id,
                    "class_reminder",
                    class_name=gym_class.name,
                    start_local=self._local(slot),
                    location=gym_class.location,
                )
                self._count(result, delivered)
                any_delivered = any_delivered or delivered
            except Exception as exc:  # noqa: BLE001
                self._record_failure(result, f"{gym_class.class_id}/{member_id}", exc)
        return any_delivered

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _once_per_day(
        self,
        result: SweepResult,
        repository: MarkerRepository,
        key: str,
        marker: str,
        previous: Optional[str],
        send: Callable[[], bool],
        count_delivery: bool = True,
    ) -> None:
        today = local_date(self.clock.now(), self.gym_timezone).isoformat()
        try:
            if self.policy.dedupe_same_day:
                if previous == today or not repository.claim_marker(key, marker, today):
                    result.skipped += 1
                    return
            if self.policy.dedupe_same_day:
                delivered = self._send_claimed(
                    lambda: repository.release_marker(key, marker, previous), send
                )
            else:
                delivered = send()
            if count_delivery:
                self._count(result, delivered)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(result, key, exc)

    @staticmethod
    def _send_claimed(release: Callable[[], None], send: Callable[[], bool]) -> bool:
        """Run send for a claimed marker; the claim is released unless delivery succeeded."""
        try:
            delivered = send()
        except Exception:
            release()
            raise
        if not delivered:
            release()
        return delivered

    def _send_to_user(
        self, user_id: str, template: str, name_field: str = "member_name", **context: Any
    ) -> bool:
        user: Optional[UserRecord] = self.users.get_user(user_id)
        if user is None or not user.email:
            logger.warning(
                "Recipient has no email address",
                operation="reminder_sweep",
                context={"user_id": user_id, "template": template},
            )
            return False
        context[name_field] = user.first_name or user.display_name
        notification = self.notifier.notify_template(user.email, template, **context)
        # Suppressed by the delivery gate: leave unclaimed so a later run sends it
        return notification.success and not notification.skipped

    def _local(self, value: datetime) -> str:
        return value.astimezone(self.gym_timezone).strftime(LOCAL_DISPLAY_FORMAT)

    @staticmethod
    def _count(result: SweepResult, delivered: bool) -> None:
        if delivered:
            result.sent += 1
        else:
            result.failed += 1

    @staticmethod
    def _record_failure(result: SweepResult, key: str, exc: Exception) -> None:
        result.failed += 1
        logger.error(
            "Reminder failed",
            operation="reminder_sweep",
            context={"sweep": result.name, "record": key},
            error=str(exc),
        )
