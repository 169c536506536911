"""Reschedule (drag & drop) coordinator.

A move is a two-step exchange:
1. preview_reschedule - resolve the drop target, keep the duration and ask the
   placement engine in preview mode. Past time and blocked slots reject the
   move outright; a double booking comes back as an advisory conflict.
2. confirm_reschedule - the operator confirmed the same drop target; resolve it
   again, re-check and commit.

Cancelling the exchange needs no call: proposals are never persisted.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import NamedTuple
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from clinic_scheduler.core.structured_logging import build_log_context
from clinic_scheduler.db.enums import PlacementMode
from clinic_scheduler.db.models import Appointment
from clinic_scheduler.services import calendar_store, placement_service
from clinic_scheduler.services.appointment_status import is_terminal
from clinic_scheduler.services.scheduling_errors import (
    DoubleBookingConflict,
    PastSchedulingError,
    PersistenceError,
    TerminalAppointmentError,
)
from clinic_scheduler.services.time_ranges import (
    duration,
    get_clinic_timezone,
    is_past_day,
    local_date,
    utcnow,
)

logger = logging.getLogger(__name__)


class RescheduleProposal(NamedTuple):
    """Transient move proposal backing the confirm/cancel dialog."""
    appointment: Appointment
    new_start: datetime
    new_end: datetime
    conflict: DoubleBookingConflict | None = None


def resolve_drop_target(
    appointment: Appointment,
    target_day: date,
    hour: int | None = None,
    tz: ZoneInfo | None = None,
) -> tuple[datetime, datetime]:
    """
    Compute the new [start, end) for a drop.

    Fine-grained views (day/week) drop onto an hour: keep the original minutes.
    Coarse views (month) drop onto a day: keep the original hour and minutes.
    Duration is always preserved as elapsed time, so a move across a DST
    change keeps the real length of the visit.
    """
    tz = tz or get_clinic_timezone()
    if hour is not None and not 0 <= hour <= 23:
        raise ValueError(f"hour must be within 0-23, got {hour}")

    length = duration(appointment.start_time, appointment.end_time)
    local_start = appointment.start_time.astimezone(tz)
    wall_time = time(
        hour=local_start.hour if hour is None else hour,
        minute=local_start.minute,
    )
    new_start = datetime.combine(target_day, wall_time, tzinfo=tz).astimezone(timezone.utc)
    return new_start, new_start + length


def _check_drop_day(target_day: date, new_start: datetime, now: datetime, tz: ZoneInfo) -> None:
    # A whole past day is rejected before the calendar is read.
    if is_past_day(target_day, local_date(now, tz)):
        raise PastSchedulingError(new_start, now)


def preview_reschedule(
    db: Session,
    clinic_id: UUID,
    appointment_id: UUID,
    target_day: date,
    hour: int | None = None,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> RescheduleProposal | None:
    """
    Build a move proposal, or None when the drop lands on the current start.

    Raises PastSchedulingError / BlockedSlotConflict when the move may not be
    offered at all, and TerminalAppointmentError for finished appointments.
    """
    now = now or utcnow()
    tz = tz or get_clinic_timezone()
    appointment = calendar_store.get_appointment(db, clinic_id, appointment_id)
    new_start, new_end = resolve_drop_target(appointment, target_day, hour, tz)
    if new_start == appointment.start_time:
        return None
    if is_terminal(appointment.status):
        raise TerminalAppointmentError(appointment.status)
    _check_drop_day(target_day, new_start, now, tz)

    decision = placement_service.propose_booking(
        db,
        clinic_id,
        appointment.staff_id,
        new_start,
        new_end,
        exclude_appointment_id=appointment.id,
        mode=PlacementMode.PREVIEW,
        now=now,
    )
    logger.info(
        "reschedule_previewed",
        extra=build_log_context(
            clinic_id=clinic_id,
            staff_id=appointment.staff_id,
            appointment_id=appointment.id,
            kind=decision.conflict.kind if decision.conflict else None,
        ),
    )
    return RescheduleProposal(appointment, new_start, new_end, decision.conflict)


def confirm_reschedule(
    db: Session,
    clinic_id: UUID,
    appointment_id: UUID,
    target_day: date,
    hour: int | None = None,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> Appointment:
    """
    Commit a confirmed move.

    Takes the same drop target as the preview and resolves it again, so the
    committed range always keeps the appointment's duration. A drop on the
    current start changes nothing. Past time and blocked slots are checked
    again against the current clock and calendar; a double booking the
    operator already saw is accepted. On a store failure the appointment
    keeps its previous placement.
    """
    now = now or utcnow()
    tz = tz or get_clinic_timezone()
    appointment = calendar_store.get_appointment(db, clinic_id, appointment_id)
    new_start, new_end = resolve_drop_target(appointment, target_day, hour, tz)
    if new_start == appointment.start_time:
        return appointment
    if is_terminal(appointment.status):
        raise TerminalAppointmentError(appointment.status)
    _check_drop_day(target_day, new_start, now, tz)

    placement_service.propose_booking(
        db,
        clinic_id,
        appointment.staff_id,
        new_start,
        new_end,
        exclude_appointment_id=appointment.id,
        mode=PlacementMode.PREVIEW,
        now=now,
        lock=True,
    )
    log_context = build_log_context(
        clinic_id=clinic_id, staff_id=appointment.staff_id, appointment_id=appointment.id
    )
    try:
        appointment = calendar_store.update_appointment_fields(
            db, appointment, start_time=new_start, end_time=new_end
        )
    except PersistenceError:
        logger.exception("reschedule_failed", extra=log_context)
        raise

    logger.info("reschedule_committed", extra=log_context)
    return appointment
