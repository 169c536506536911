"""Appointments router - booking, walk-ins, reschedule and visit transitions.

All endpoints are scoped to a clinic via the path.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from clinic_scheduler.core.deps import get_db, get_payment_verifier
from clinic_scheduler.core.http_errors import to_http_exception
from clinic_scheduler.db.models import Appointment
from clinic_scheduler.schemas.appointment import (
    AppointmentCreate,
    AppointmentRead,
    RescheduleConfirm,
    RescheduleDrop,
    RescheduleProposalRead,
    TransitionRequest,
    TransitionResultRead,
    WalkInCreate,
)
from clinic_scheduler.services import (
    calendar_store,
    placement_service,
    reschedule_service,
    visit_service,
)
from clinic_scheduler.services.appointment_status import status_label
from clinic_scheduler.services.billing import PaymentVerifier
from clinic_scheduler.services.scheduling_errors import SchedulingError
from clinic_scheduler.services.time_ranges import as_utc, utcnow

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def appointment_to_read(appt: Appointment, now: datetime | None = None) -> AppointmentRead:
    """Convert Appointment model to read schema."""
    return AppointmentRead(
        id=appt.id,
        clinic_id=appt.clinic_id,
        patient_id=appt.patient_id,
        staff_id=appt.staff_id,
        patient_label=appt.patient_label,
        start_time=appt.start_time,
        end_time=appt.end_time,
        treatment=appt.treatment,
        room=appt.room,
        notes=appt.notes,
        is_walk_in=appt.is_walk_in,
        status=appt.status,
        status_label=status_label(appt.status),
        checked_in_at=appt.checked_in_at,
        treatment_started_at=appt.treatment_started_at,
        checked_out_at=appt.checked_out_at,
        cancelled_at=appt.cancelled_at,
        queue_number=appt.queue_number,
        manual_status_change_open=visit_service.is_manual_status_change_open(appt, now),
    )


def _transition_to_read(result: visit_service.TransitionResult) -> TransitionResultRead:
    return TransitionResultRead(
        appointment=appointment_to_read(result.appointment),
        from_status=result.from_status,
        to_status=result.to_status,
        queue_number=result.queue_number,
    )


# =============================================================================
# Appointments
# =============================================================================

@router.get("", response_model=list[AppointmentRead])
def list_appointments(
    clinic_id: UUID,
    db: Session = Depends(get_db),
    staff_id: UUID | None = Query(None),
    start: datetime | None = Query(None, description="Window start (inclusive)"),
    end: datetime | None = Query(None, description="Window end (exclusive)"),
    status: list[str] | None = Query(None),
):
    """List appointments, optionally for one staff member and time window."""
    appointments = calendar_store.list_appointments(
        db,
        clinic_id,
        staff_id=staff_id,
        window_start=as_utc(start),
        window_end=as_utc(end),
        statuses=status,
    )
    now = utcnow()
    return [appointment_to_read(a, now) for a in appointments]


@router.post("", response_model=AppointmentRead, status_code=201)
def book_appointment(
    clinic_id: UUID,
    data: AppointmentCreate,
    db: Session = Depends(get_db),
):
    """Book an appointment. Any conflict rejects the booking."""
    try:
        appointment = placement_service.book_appointment(
            db,
            clinic_id=clinic_id,
            patient_id=data.patient_id,
            staff_id=data.staff_id,
            start=data.start_time,
            end=data.end_time,
            treatment=data.treatment,
            room=data.room,
            patient_label=data.patient_label,
            notes=data.notes,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return appointment_to_read(appointment)


@router.post("/walk-ins", response_model=TransitionResultRead, status_code=201)
def create_walk_in(
    clinic_id: UUID,
    data: WalkInCreate,
    db: Session = Depends(get_db),
):
    """Register a walk-in: booked from now and checked in with a queue number."""
    try:
        result = visit_service.create_walk_in(
            db,
            clinic_id=clinic_id,
            patient_id=data.patient_id,
            staff_id=data.staff_id,
            treatment=data.treatment,
            room=data.room,
            duration_minutes=data.duration_minutes,
            patient_label=data.patient_label,
            notes=data.notes,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return _transition_to_read(result)


@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    clinic_id: UUID,
    appointment_id: UUID,
    db: Session = Depends(get_db),
):
    """Get appointment details."""
    try:
        appointment = calendar_store.get_appointment(db, clinic_id, appointment_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return appointment_to_read(appointment)


# =============================================================================
# Reschedule
# =============================================================================

@router.post(
    "/{appointment_id}/reschedule/preview",
    response_model=RescheduleProposalRead,
    responses={204: {"description": "Dropped on its current start; nothing to confirm"}},
)
def preview_reschedule(
    clinic_id: UUID,
    appointment_id: UUID,
    data: RescheduleDrop,
    db: Session = Depends(get_db),
):
    """
    Resolve a drop target into a move proposal.

    A double booking is returned as an advisory conflict; past time and
    blocked slots reject the move.
    """
    try:
        proposal = reschedule_service.preview_reschedule(
            db, clinic_id, appointment_id, data.target_date, hour=data.hour
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if proposal is None:
        return Response(status_code=204)
    return RescheduleProposalRead(
        appointment_id=proposal.appointment.id,
        original_start=proposal.appointment.start_time,
        original_end=proposal.appointment.end_time,
        new_start=proposal.new_start,
        new_end=proposal.new_end,
        conflict=proposal.conflict.to_outcome() if proposal.conflict else None,
    )


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
def confirm_reschedule(
    clinic_id: UUID,
    appointment_id: UUID,
    data: RescheduleConfirm,
    db: Session = Depends(get_db),
):
    """Commit an operator-confirmed move. The range is resolved again from the drop target."""
    try:
        appointment = reschedule_service.confirm_reschedule(
            db, clinic_id, appointment_id, data.target_date, hour=data.hour
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return appointment_to_read(appointment)


# =============================================================================
# Visit transitions
# =============================================================================

@router.post("/{appointment_id}/transition", response_model=TransitionResultRead)
def transition_appointment(
    clinic_id: UUID,
    appointment_id: UUID,
    data: TransitionRequest,
    db: Session = Depends(get_db),
    payment_verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    """Change visit status (staff action)."""
    try:
        result = visit_service.transition_appointment(
            db,
            clinic_id,
            appointment_id,
            data.to_status,
            payment_verifier=payment_verifier,
            note=data.note,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return _transition_to_read(result)
