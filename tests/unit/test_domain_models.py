"""
Unit tests for domain models (src/domain)

Tests covering:
- TrainingSession item conversion and record invariants
- CreditLedger validity window and consumption guard
- UserRecord/Caller role helpers
- Reminder record parsing from DynamoDB items
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.domain import (
    Appointment,
    AttendanceOutcome,
    Caller,
    CreditLedger,
    ExerciseRecord,
    GymClass,
    Membership,
    Payment,
    Role,
    SessionStatus,
    TrainingSession,
    UserRecord,
)

START = datetime(2026, 10, 20, 6, 0, tzinfo=timezone.utc)


def make_session(**overrides):
    fields = dict(
        session_id="s-1",
        member_id="member-1",
        trainer_id="trainer-1",
        start_time=START,
    )
    fields.update(overrides)
    return TrainingSession(**fields)


class TestSessionStatus:
    def test_terminal_statuses(self):
        assert SessionStatus.COMPLETED.is_terminal
        assert SessionStatus.CANCELLED.is_terminal
        assert not SessionStatus.NO_SHOW.is_terminal
        assert not SessionStatus.SCHEDULED.is_terminal
        assert not SessionStatus.IN_PROGRESS.is_terminal


class TestTrainingSession:
    def test_to_item_drops_unset_optionals(self):
        item = make_session().to_item()

        assert item["start_time"] == "2026-10-20T06:00:00.000000Z"
        assert item["status"] == "scheduled"
        assert item["version"] == 1
        for absent in ("end_time", "attendance", "rating", "programme_id", "cancelled_by"):
            assert absent not in item

    def test_from_item_reads_dynamodb_decimals(self):
        item = {
            "session_id": "s-1",
            "member_id": "member-1",
            "trainer_id": "trainer-1",
            "start_time": "2026-10-20T06:00:00.000000Z",
            "end_time": "2026-10-20T07:00:00.000000Z",
            "status": "completed",
            "attendance": "late",
            "rating": Decimal("4"),
            "version": Decimal("3"),
            "exercises_completed": [
                {"exercise_id": "squat", "sets_completed": Decimal("4"), "reps_completed": "8-10"}
            ],
        }

        session = TrainingSession.from_item(item)

        assert session.status == SessionStatus.COMPLETED
        assert session.attendance == AttendanceOutcome.LATE
        assert session.rating == 4
        assert session.version == 3
        assert session.exercises_completed[0] == ExerciseRecord(
            exercise_id="squat", sets_completed=4, reps_completed="8-10"
        )
        assert session.invariant_violations() == []

    def test_to_dict_keeps_nullable_fields(self):
        data = make_session().to_dict()
        assert data["end_time"] is None
        assert data["attendance"] is None
        assert data["rating"] is None

    def test_item_round_trip_preserves_record(self):
        session = make_session(
            status=SessionStatus.CANCELLED,
            cancelled_by="trainer-1",
            cancelled_at=START - timedelta(hours=2),
            remarks="Trainer ill",
            version=2,
        )
        assert TrainingSession.from_item(session.to_item()) == session

    def test_end_time_without_completion_is_flagged(self):
        session = make_session(end_time=START + timedelta(hours=1))
        assert session.invariant_violations() == ["end_time must be set iff status is completed"]

    def test_completed_without_end_time_is_flagged(self):
        session = make_session(status=SessionStatus.COMPLETED)
        assert "end_time must be set iff status is completed" in session.invariant_violations()

    def test_no_show_attendance_must_leave_scheduled(self):
        session = make_session(attendance=AttendanceOutcome.NO_SHOW)
        assert len(session.invariant_violations()) == 1

        session.status = SessionStatus.NO_SHOW
        assert session.invariant_violations() == []

        session.status = SessionStatus.CANCELLED
        assert session.invariant_violations() == []

    def test_rating_requires_completion(self):
        session = make_session(rating=5)
        assert session.invariant_violations() == ["rating is only allowed on completed sessions"]


class TestCreditLedger:
    @pytest.fixture
    def ledger(self):
        return CreditLedger(
            member_id="member-1",
            total=12,
            used=11,
            validity_start=datetime(2026, 10, 1, tzinfo=timezone.utc),
            validity_end=datetime(2026, 10, 31, 19, 59, 59, tzinfo=timezone.utc),
        )

    def test_remaining(self, ledger):
        assert ledger.remaining == 1

    def test_validity_is_inclusive(self, ledger):
        assert ledger.is_within_validity(ledger.validity_start)
        assert ledger.is_within_validity(ledger.validity_end)
        assert not ledger.is_within_validity(ledger.validity_end + timedelta(seconds=1))
        assert not ledger.is_within_validity(ledger.validity_start - timedelta(seconds=1))

    def test_inactive_ledger_is_never_within_validity(self, ledger):
        ledger.status = "suspended"
        assert not ledger.is_within_validity(START)

    def test_remaining_tracks_used(self, ledger):
        ledger.used = 12
        assert ledger.remaining == ledger.total - 12

    def test_item_round_trip(self, ledger):
        item = ledger.to_item()
        item["total"] = Decimal(item["total"])
        item["used"] = Decimal(item["used"])
        assert CreditLedger.from_item(item) == ledger


class TestIdentity:
    def test_display_name_falls_back_to_id(self):
        assert UserRecord("u-1", Role.MEMBER, first_name="Aisha", last_name="Khan").display_name == (
            "Aisha Khan"
        )
        assert UserRecord("u-2", Role.MEMBER).display_name == "u-2"

    def test_caller_from_user(self):
        caller = Caller.from_user(UserRecord.from_item({"user_id": "t-1", "role": "trainer"}))
        assert caller == Caller("t-1", Role.TRAINER)
        assert caller.is_trainer and not caller.is_admin

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            UserRecord.from_item({"user_id": "x", "role": "owner"})


class TestReminderRecords:
    def test_membership_defaults(self):
        membership = Membership.from_item(
            {"membership_id": "m-1", "member_id": "member-1", "end_date": "2026-10-25T19:59:59Z"}
        )
        assert membership.plan_name == "Membership"
        assert membership.status == "active"

    def test_payment_invoice_number(self):
        payment = Payment.from_item(
            {
                "payment_id": "pay-000123456",
                "member_id": "member-1",
                "amount": Decimal("350.00"),
                "created_at": "2026-10-10T08:00:00Z",
            }
        )
        assert payment.invoice_number == "INV-123456"
        payment.receipt_number = "R-77"
        assert payment.invoice_number == "R-77"

    def test_appointment_defaults(self):
        appointment = Appointment.from_item(
            {
                "appointment_id": "a-1",
                "client_id": "member-1",
                "staff_id": "staff-1",
                "start_time": "2026-10-20T06:00:00Z",
            }
        )
        assert appointment.status == "scheduled"
        assert appointment.location == ""
        assert appointment.start_time == datetime(2026, 10, 20, 6, 0, tzinfo=timezone.utc)

    def test_class_schedule_parsed(self):
        gym_class = GymClass.from_item(
            {
                "class_id": "c-1",
                "name": "Spin",
                "schedule": ["2026-10-20T04:00:00Z"],
                "member_ids": ["member-1"],
            }
        )
        assert gym_class.schedule == [datetime(2026, 10, 20, 4, 0, tzinfo=timezone.utc)]
        assert gym_class.location == "Main Gym"
