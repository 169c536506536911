"""
Tests for the visit state machine.

Coverage:
- Transition table and terminal states
- Manual-only exits from scheduled/confirmed
- Check-in stamps and daily queue numbers
- Checkout payment guard
- Compare-and-swap on concurrent status changes
- Walk-ins
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from clinic_scheduler.db.enums import AppointmentStatus, InvoiceStatus, TransitionTrigger
from clinic_scheduler.db.models import Appointment, AppointmentStatusChange, Invoice
from clinic_scheduler.services import visit_service
from clinic_scheduler.services.appointment_status import can_transition, status_label
from clinic_scheduler.services.scheduling_errors import (
    AutomaticTransitionBlockedError,
    DoubleBookingConflict,
    InvalidTransitionError,
    NotFoundError,
    PaymentRequiredError,
    StaleStatusError,
    TerminalAppointmentError,
)


def at(hour, minute=0, day=10):
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


class StubVerifier:
    """Billing stub with a fixed answer."""

    def __init__(self, confirmed: bool):
        self.confirmed = confirmed
        self.calls = []

    def is_payment_confirmed(self, appointment_id):
        self.calls.append(appointment_id)
        return self.confirmed


@pytest.fixture
def appointment(make_appointment):
    return make_appointment(at(9), at(9, 30))


def move(db, clinic_id, appt, *statuses, now=None):
    result = None
    for status in statuses:
        result = visit_service.transition_appointment(
            db, clinic_id, appt.id, status,
            payment_verifier=StubVerifier(True), now=now or at(9, 5),
        )
    return result


# =============================================================================
# Transition table
# =============================================================================

class TestValidateTransition:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("scheduled", "confirmed"),
            ("pending", "confirmed"),
            ("unconfirmed", "checked_in"),
            ("scheduled", "no_show"),
            ("confirmed", "checked_in"),
            ("confirmed", "cancelled"),
            ("checked_in", "in_treatment"),
            ("checked_in", "completed"),
            ("in_treatment", "completed"),
            ("in_treatment", "cancelled"),
        ],
    )
    def test_allowed(self, current, target):
        assert visit_service.validate_transition(current, target) == AppointmentStatus(target)
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("in_treatment", "confirmed"),
            ("checked_in", "scheduled"),
            ("checked_in", "no_show"),
            ("scheduled", "in_treatment"),
            ("confirmed", "completed"),
            ("scheduled", "bogus"),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransitionError):
            visit_service.validate_transition(current, target)
        assert not can_transition(current, target)

    @pytest.mark.parametrize("terminal", ["completed", "cancelled", "no_show"])
    def test_terminal_states_cannot_move(self, terminal):
        with pytest.raises(TerminalAppointmentError) as exc_info:
            visit_service.validate_transition(terminal, "confirmed")
        assert exc_info.value.to_outcome()["reason"] == "terminal"

    def test_synonym_target_normalizes(self):
        with pytest.raises(InvalidTransitionError):
            visit_service.validate_transition("confirmed", "pending")

    def test_automatic_exit_from_scheduled_blocked(self):
        with pytest.raises(AutomaticTransitionBlockedError):
            visit_service.validate_transition(
                "scheduled", "checked_in", TransitionTrigger.AUTOMATIC
            )
        with pytest.raises(AutomaticTransitionBlockedError):
            visit_service.validate_transition(
                "confirmed", "no_show", TransitionTrigger.AUTOMATIC
            )

    def test_automatic_allowed_after_check_in(self):
        assert visit_service.validate_transition(
            "checked_in", "in_treatment", TransitionTrigger.AUTOMATIC
        ) == AppointmentStatus.IN_TREATMENT


def test_status_labels():
    assert status_label("pending") == "Pending"
    assert status_label("checked_in") == "Checked In"
    assert status_label("no_show") == "No-Show"
    assert status_label("cancelled") == "Canceled"
    assert status_label(None) == "Scheduled"
    assert status_label("custom") == "custom"


# =============================================================================
# Check-in and queue numbers
# =============================================================================

class TestCheckIn:
    def test_check_in_before_start_is_permitted(self, db, clinic_id, appointment):
        result = visit_service.check_in(db, clinic_id, appointment.id, now=at(8, 50))

        assert result.from_status == "scheduled"
        assert result.to_status == "checked_in"
        assert result.queue_number == 1
        stored = db.get(Appointment, appointment.id)
        assert stored.status == AppointmentStatus.CHECKED_IN.value
        assert stored.checked_in_at == at(8, 50)
        assert stored.queue_number == 1

    def test_queue_numbers_increase_per_day(self, db, clinic_id, make_appointment):
        first = make_appointment(at(9), at(9, 30))
        second = make_appointment(at(10), at(10, 30))
        third = make_appointment(at(11), at(11, 30))

        numbers = [
            visit_service.check_in(db, clinic_id, a.id, now=at(8, 45 + i)).queue_number
            for i, a in enumerate([first, second, third])
        ]
        assert numbers == [1, 2, 3]

    def test_queue_resets_next_day(self, db, clinic_id, make_appointment):
        today = make_appointment(at(9), at(9, 30))
        tomorrow = make_appointment(at(9, day=11), at(9, 30, day=11))

        assert visit_service.check_in(db, clinic_id, today.id, now=at(9)).queue_number == 1
        assert visit_service.check_in(db, clinic_id, tomorrow.id, now=at(9, day=11)).queue_number == 1

    def test_queue_is_per_clinic(self, db, clinic_id, staff_id, make_appointment):
        other_clinic = uuid4()
        ours = make_appointment(at(9), at(9, 30))
        theirs = make_appointment(at(9), at(9, 30), clinic=other_clinic)

        assert visit_service.check_in(db, clinic_id, ours.id, now=at(9)).queue_number == 1
        assert visit_service.check_in(db, other_clinic, theirs.id, now=at(9)).queue_number == 1

    def test_next_queue_number_counts_up(self, db, clinic_id):
        day = date(2024, 6, 10)
        assert visit_service.next_queue_number(db, clinic_id, day) == 1
        assert visit_service.next_queue_number(db, clinic_id, day) == 2
        db.commit()
        assert visit_service.next_queue_number(db, clinic_id, day) == 3

    def test_queue_number_kept_through_later_transitions(self, db, clinic_id, appointment):
        move(db, clinic_id, appointment, "checked_in", "in_treatment", "completed")
        stored = db.get(Appointment, appointment.id)
        assert stored.queue_number == 1
        assert stored.treatment_started_at is not None
        assert stored.checked_out_at is not None


# =============================================================================
# Checkout guard
# =============================================================================

class TestCheckout:
    def test_unpaid_checkout_rejected_and_status_unchanged(self, db, clinic_id, appointment):
        move(db, clinic_id, appointment, "checked_in")
        verifier = StubVerifier(False)

        with pytest.raises(PaymentRequiredError) as exc_info:
            visit_service.check_out(db, clinic_id, appointment.id, payment_verifier=verifier)

        assert exc_info.value.to_outcome()["kind"] == "PaymentRequiredError"
        assert verifier.calls == [appointment.id]
        db.expire_all()
        stored = db.get(Appointment, appointment.id)
        assert stored.status == AppointmentStatus.CHECKED_IN.value
        assert stored.checked_out_at is None

    def test_paid_invoice_allows_checkout(self, db, clinic_id, appointment):
        move(db, clinic_id, appointment, "checked_in")
        db.add(
            Invoice(
                clinic_id=clinic_id,
                appointment_id=appointment.id,
                status=InvoiceStatus.PAID.value,
            )
        )
        db.commit()

        result = visit_service.check_out(db, clinic_id, appointment.id, now=at(10))
        assert result.to_status == "completed"
        assert result.appointment.checked_out_at == at(10)

    def test_unpaid_invoice_blocks_checkout(self, db, clinic_id, appointment):
        move(db, clinic_id, appointment, "checked_in")
        db.add(
            Invoice(
                clinic_id=clinic_id,
                appointment_id=appointment.id,
                status=InvoiceStatus.SENT.value,
            )
        )
        db.commit()

        with pytest.raises(PaymentRequiredError):
            visit_service.check_out(db, clinic_id, appointment.id)

    def test_payment_not_consulted_for_other_transitions(self, db, clinic_id, appointment):
        verifier = StubVerifier(False)
        visit_service.transition_appointment(
            db, clinic_id, appointment.id, "cancelled", payment_verifier=verifier
        )
        assert verifier.calls == []


# =============================================================================
# Side effects and concurrency
# =============================================================================

class TestTransitionEffects:
    def test_cancel_stamps_and_records_history(self, db, clinic_id, appointment):
        visit_service.transition_appointment(
            db, clinic_id, appointment.id, "cancelled", note="patient called", now=at(8)
        )
        stored = db.get(Appointment, appointment.id)
        assert stored.status == "cancelled"
        assert stored.cancelled_at == at(8)

        history = db.execute(select(AppointmentStatusChange)).scalars().all()
        assert [(h.from_status, h.to_status, h.note) for h in history] == [
            ("scheduled", "cancelled", "patient called")
        ]

    def test_terminal_appointment_rejects_transition(self, db, clinic_id, appointment):
        move(db, clinic_id, appointment, "cancelled")
        with pytest.raises(TerminalAppointmentError):
            visit_service.check_in(db, clinic_id, appointment.id)

    def test_invalid_transition_leaves_no_history(self, db, clinic_id, appointment):
        move(db, clinic_id, appointment, "checked_in", "in_treatment")
        with pytest.raises(InvalidTransitionError):
            move(db, clinic_id, appointment, "confirmed")
        history = db.execute(select(AppointmentStatusChange)).scalars().all()
        assert len(history) == 2

    def test_stale_status_loses_compare_and_swap(self, db, clinic_id, appointment):
        # Another writer cancels after this session loaded the appointment
        db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id)
            .values(status=AppointmentStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        with pytest.raises(StaleStatusError) as exc_info:
            visit_service.check_in(db, clinic_id, appointment.id)
        assert exc_info.value.to_outcome()["reason"] == "stale"

    def test_other_clinic_cannot_transition(self, db, appointment):
        with pytest.raises(NotFoundError):
            visit_service.check_in(db, uuid4(), appointment.id)


def test_manual_status_change_affordance(appointment):
    assert not visit_service.is_manual_status_change_open(appointment, now=at(9))
    assert visit_service.is_manual_status_change_open(appointment, now=at(9, 1))
    assert not visit_service.is_manual_status_change_open(appointment, now=at(8, 50))


# =============================================================================
# Walk-ins
# =============================================================================

class TestWalkIn:
    def test_walk_in_is_checked_in_with_queue_number(self, db, clinic_id, staff_id, patient_id):
        result = visit_service.create_walk_in(
            db, clinic_id, patient_id, staff_id, now=at(14)
        )
        walk_in = result.appointment
        assert walk_in.is_walk_in
        assert walk_in.status == "checked_in"
        assert walk_in.start_time == at(14)
        assert walk_in.end_time == at(14) + timedelta(minutes=30)
        assert walk_in.checked_in_at == at(14)
        assert result.queue_number == 1
        assert len(walk_in.status_changes) == 1

    def test_walk_in_shares_queue_with_check_ins(
        self, db, clinic_id, staff_id, patient_id, appointment
    ):
        visit_service.check_in(db, clinic_id, appointment.id, now=at(9))
        result = visit_service.create_walk_in(
            db, clinic_id, patient_id, uuid4(), duration_minutes=15, now=at(9, 10)
        )
        assert result.queue_number == 2
        assert result.appointment.end_time == at(9, 25)

    def test_walk_in_respects_staff_calendar(
        self, db, clinic_id, staff_id, patient_id, appointment
    ):
        with pytest.raises(DoubleBookingConflict):
            visit_service.create_walk_in(db, clinic_id, patient_id, staff_id, now=at(9, 10))
