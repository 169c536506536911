"""Visit state machine - operational lifecycle of a booked appointment.

Handles:
- Transition validation against the visit transition table
- Guards (terminal states, manual-only exits, checkout payment)
- Side effects (check-in/out stamps, daily queue numbers, status history)
- Walk-in creation (booked and checked in at once)

Transitions are applied with a compare-and-swap on the current status, so two
concurrent requests from the same prior state cannot both succeed.
"""

import logging
from datetime import date, datetime, timedelta
from typing import NamedTuple
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.structured_logging import build_log_context
from clinic_scheduler.db.enums import AppointmentStatus, TransitionTrigger
from clinic_scheduler.db.models import Appointment, AppointmentStatusChange, DailyQueueCounter
from clinic_scheduler.services import calendar_store, placement_service
from clinic_scheduler.services.appointment_status import (
    ALLOWED_TRANSITIONS,
    MANUAL_ONLY_SOURCES,
    TERMINAL_STATUSES,
    normalize_status,
)
from clinic_scheduler.services.billing import InvoicePaymentVerifier, PaymentVerifier
from clinic_scheduler.services.scheduling_errors import (
    AutomaticTransitionBlockedError,
    InvalidTransitionError,
    PaymentRequiredError,
    PersistenceError,
    SchedulingError,
    StaleStatusError,
    TerminalAppointmentError,
)
from clinic_scheduler.services.time_ranges import get_clinic_timezone, local_date, utcnow

logger = logging.getLogger(__name__)


class TransitionResult(NamedTuple):
    """Committed transition. queue_number is set once the visit is checked in."""
    appointment: Appointment
    from_status: str
    to_status: str
    queue_number: int | None


# =============================================================================
# Validation
# =============================================================================

def validate_transition(
    current: str,
    target: str,
    trigger: TransitionTrigger = TransitionTrigger.STAFF,
) -> AppointmentStatus:
    """
    Check current -> target against the transition table and guards.

    Returns the canonical target status. Illegal transitions raise; nothing
    is silently coerced.
    """
    try:
        source = normalize_status(current)
    except ValueError:
        raise InvalidTransitionError(current, str(target))
    if source in TERMINAL_STATUSES:
        raise TerminalAppointmentError(current, str(target))

    try:
        destination = normalize_status(target)
    except ValueError:
        raise InvalidTransitionError(current, str(target))
    if destination not in ALLOWED_TRANSITIONS[source]:
        raise InvalidTransitionError(current, destination.value)

    if trigger == TransitionTrigger.AUTOMATIC and source in MANUAL_ONLY_SOURCES:
        raise AutomaticTransitionBlockedError(
            current,
            destination.value,
            f"Leaving {source.value} requires an explicit staff action",
        )
    return destination


def is_manual_status_change_open(appointment: Appointment, now: datetime | None = None) -> bool:
    """Whether the manual status control should be offered.

    Opens once the start time is at least the configured delay in the past.
    This is a presentation affordance only; transitions do not depend on it.
    """
    now = now or utcnow()
    delay = timedelta(minutes=settings.MANUAL_STATUS_CHANGE_DELAY_MINUTES)
    return now >= appointment.start_time + delay


# =============================================================================
# Queue numbers
# =============================================================================

def next_queue_number(db: Session, clinic_id: UUID, business_date: date) -> int:
    """
    Increment and return the clinic's ticket counter for a business day.

    Runs inside the caller's transaction: the UPDATE holds the counter row
    until commit, so concurrent check-ins serialize. Does not commit.
    """
    result = db.execute(
        update(DailyQueueCounter)
        .where(
            and_(
                DailyQueueCounter.clinic_id == clinic_id,
                DailyQueueCounter.business_date == business_date,
            )
        )
        .values(last_number=DailyQueueCounter.last_number + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        counter = DailyQueueCounter(clinic_id=clinic_id, business_date=business_date, last_number=1)
        db.add(counter)
        db.flush()
        return 1

    return db.execute(
        select(DailyQueueCounter.last_number).where(
            and_(
                DailyQueueCounter.clinic_id == clinic_id,
                DailyQueueCounter.business_date == business_date,
            )
        )
    ).scalar_one()


# =============================================================================
# Transitions
# =============================================================================

def _stamp_fields(target: AppointmentStatus, now: datetime) -> dict:
    if target == AppointmentStatus.CHECKED_IN:
        return {"checked_in_at": now}
    if target == AppointmentStatus.IN_TREATMENT:
        return {"treatment_started_at": now}
    if target == AppointmentStatus.COMPLETED:
        return {"checked_out_at": now}
    if target == AppointmentStatus.CANCELLED:
        return {"cancelled_at": now}
    return {}


def transition_appointment(
    db: Session,
    clinic_id: UUID,
    appointment_id: UUID,
    target: str,
    payment_verifier: PaymentVerifier | None = None,
    trigger: TransitionTrigger = TransitionTrigger.STAFF,
    note: str | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Move an appointment to a new visit status.

    - Entering checked_in stamps check-in time and assigns the next queue
      number for the clinic's business day (once, never reassigned)
    - Entering completed requires confirmed payment from billing and stamps
      check-out time
    - The status update only applies if the stored status is still the one
      validated against (compare-and-swap)
    """
    now = now or utcnow()
    appointment = calendar_store.get_appointment(db, clinic_id, appointment_id)
    expected = appointment.status
    log_ids = {"clinic_id": clinic_id, "appointment_id": appointment_id}

    try:
        destination = validate_transition(expected, target, trigger)
        if destination == AppointmentStatus.COMPLETED:
            verifier = payment_verifier or InvoicePaymentVerifier(db)
            if not verifier.is_payment_confirmed(appointment.id):
                raise PaymentRequiredError(appointment.id)
    except SchedulingError as e:
        logger.info(
            "transition_rejected",
            extra=build_log_context(
                **log_ids, kind=e.kind, from_status=expected, to_status=str(target)
            ),
        )
        raise

    values = {"status": destination.value, **_stamp_fields(destination, now)}
    try:
        result = db.execute(
            update(Appointment)
            .where(
                and_(
                    Appointment.id == appointment.id,
                    Appointment.clinic_id == clinic_id,
                    Appointment.status == expected,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise StaleStatusError(
                expected,
                destination.value,
                f"Appointment status changed from {expected} before this request applied",
            )

        queue_number = appointment.queue_number
        if destination == AppointmentStatus.CHECKED_IN and queue_number is None:
            business_date = local_date(now, get_clinic_timezone())
            queue_number = next_queue_number(db, clinic_id, business_date)
            db.execute(
                update(Appointment)
                .where(Appointment.id == appointment.id)
                .values(queue_number=queue_number)
                .execution_options(synchronize_session=False)
            )

        db.add(
            AppointmentStatusChange(
                appointment_id=appointment.id,
                clinic_id=clinic_id,
                from_status=expected,
                to_status=destination.value,
                trigger=trigger.value,
                note=note,
                changed_at=now,
            )
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("transition_failed", extra=build_log_context(**log_ids))
        raise PersistenceError("transition_appointment", exc) from exc

    calendar_store.commit_or_rollback(db, "transition_appointment", **log_ids)
    db.refresh(appointment)

    logger.info(
        "status_transitioned",
        extra=build_log_context(
            **log_ids, from_status=expected, to_status=destination.value
        ),
    )
    if destination == AppointmentStatus.CHECKED_IN:
        logger.info(f"queue_number_assigned number={queue_number}", extra=build_log_context(**log_ids))

    return TransitionResult(
        appointment=appointment,
        from_status=expected,
        to_status=destination.value,
        queue_number=appointment.queue_number,
    )


def check_in(
    db: Session,
    clinic_id: UUID,
    appointment_id: UUID,
    now: datetime | None = None,
) -> TransitionResult:
    """Staff check-in; the returned queue number goes on the receipt."""
    return transition_appointment(
        db, clinic_id, appointment_id, AppointmentStatus.CHECKED_IN.value, now=now
    )


def check_out(
    db: Session,
    clinic_id: UUID,
    appointment_id: UUID,
    payment_verifier: PaymentVerifier | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Checkout path to completed, guarded by payment confirmation."""
    return transition_appointment(
        db,
        clinic_id,
        appointment_id,
        AppointmentStatus.COMPLETED.value,
        payment_verifier=payment_verifier,
        now=now,
    )


# =============================================================================
# Walk-ins
# =============================================================================

def create_walk_in(
    db: Session,
    clinic_id: UUID,
    patient_id: UUID,
    staff_id: UUID,
    treatment: str = "Walk-in",
    room: str | None = None,
    duration_minutes: int | None = None,
    patient_label: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Book an unscheduled patient from now and check them in immediately.

    The staff calendar must be free (same placement rules as any booking).
    """
    now = now or utcnow()
    minutes = duration_minutes or settings.WALK_IN_DEFAULT_DURATION_MINUTES
    end = now + timedelta(minutes=minutes)
    placement_service.propose_booking(db, clinic_id, staff_id, now, end, now=now, lock=True)

    appointment = Appointment(
        clinic_id=clinic_id,
        patient_id=patient_id,
        staff_id=staff_id,
        patient_label=patient_label,
        start_time=now,
        end_time=end,
        treatment=treatment,
        room=room,
        notes=notes,
        is_walk_in=True,
        status=AppointmentStatus.CHECKED_IN.value,
        checked_in_at=now,
    )
    try:
        appointment.queue_number = next_queue_number(
            db, clinic_id, local_date(now, get_clinic_timezone())
        )
        appointment.status_changes.append(
            AppointmentStatusChange(
                clinic_id=clinic_id,
                from_status=AppointmentStatus.SCHEDULED.value,
                to_status=AppointmentStatus.CHECKED_IN.value,
                trigger=TransitionTrigger.STAFF.value,
                note="walk-in",
                changed_at=now,
            )
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("walk_in_failed", extra=build_log_context(clinic_id=clinic_id))
        raise PersistenceError("create_walk_in", exc) from exc

    appointment = calendar_store.insert_appointment(db, appointment)
    logger.info(
        f"walk_in_checked_in number={appointment.queue_number}",
        extra=build_log_context(
            clinic_id=clinic_id, staff_id=staff_id, appointment_id=appointment.id
        ),
    )
    return TransitionResult(
        appointment=appointment,
        from_status=AppointmentStatus.SCHEDULED.value,
        to_status=AppointmentStatus.CHECKED_IN.value,
        queue_number=appointment.queue_number,
    )
