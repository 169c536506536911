"""Resource calendar store - clinic-scoped reads and writes.

Reads are filtered range queries; writes commit immediately and translate
database failures into ``PersistenceError`` after rolling the session back.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core.structured_logging import build_log_context
from clinic_scheduler.db.models import Appointment, BlockedSlot
from clinic_scheduler.services.scheduling_errors import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)


# =============================================================================
# Reads
# =============================================================================

def list_appointments(
    db: Session,
    clinic_id: UUID,
    staff_id: UUID | None = None,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    statuses: list[str] | None = None,
    exclude_appointment_id: UUID | None = None,
    lock: bool = False,
) -> list[Appointment]:
    """List a clinic's appointments, optionally narrowed to a staff member and window.

    The window filter uses half-open overlap: start < window_end AND end > window_start.
    ``lock`` takes row locks (FOR UPDATE) where the backend supports them.
    """
    query = select(Appointment).where(Appointment.clinic_id == clinic_id)
    if staff_id:
        query = query.where(Appointment.staff_id == staff_id)
    if window_end is not None:
        query = query.where(Appointment.start_time < window_end)
    if window_start is not None:
        query = query.where(Appointment.end_time > window_start)
    if statuses:
        query = query.where(Appointment.status.in_(statuses))
    if exclude_appointment_id:
        query = query.where(Appointment.id != exclude_appointment_id)
    if lock:
        query = query.with_for_update()
    query = query.order_by(Appointment.start_time)
    return list(db.execute(query).scalars().all())


def list_blocked_slots(
    db: Session,
    clinic_id: UUID,
    staff_id: UUID | None = None,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
) -> list[BlockedSlot]:
    """List a clinic's blocked slots with the same filters as appointments."""
    query = select(BlockedSlot).where(BlockedSlot.clinic_id == clinic_id)
    if staff_id:
        query = query.where(BlockedSlot.staff_id == staff_id)
    if window_end is not None:
        query = query.where(BlockedSlot.start_time < window_end)
    if window_start is not None:
        query = query.where(BlockedSlot.end_time > window_start)
    query = query.order_by(BlockedSlot.start_time)
    return list(db.execute(query).scalars().all())


def get_appointment(db: Session, clinic_id: UUID, appointment_id: UUID) -> Appointment:
    """Get an appointment by ID or raise NotFoundError."""
    appointment = db.execute(
        select(Appointment).where(
            and_(Appointment.id == appointment_id, Appointment.clinic_id == clinic_id)
        )
    ).scalar_one_or_none()
    if not appointment:
        raise NotFoundError("appointment", appointment_id)
    return appointment


def get_blocked_slot(db: Session, clinic_id: UUID, blocked_slot_id: UUID) -> BlockedSlot:
    """Get a blocked slot by ID or raise NotFoundError."""
    slot = db.execute(
        select(BlockedSlot).where(
            and_(BlockedSlot.id == blocked_slot_id, BlockedSlot.clinic_id == clinic_id)
        )
    ).scalar_one_or_none()
    if not slot:
        raise NotFoundError("blocked_slot", blocked_slot_id)
    return slot


# =============================================================================
# Writes
# =============================================================================

def commit_or_rollback(db: Session, operation: str, **log_ids) -> None:
    """Commit, or roll back and raise PersistenceError so nothing partial survives."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"{operation}_failed", extra=build_log_context(**log_ids))
        raise PersistenceError(operation, exc) from exc


def insert_appointment(db: Session, appointment: Appointment) -> Appointment:
    """Persist a new appointment."""
    db.add(appointment)
    commit_or_rollback(
        db,
        "insert_appointment",
        clinic_id=appointment.clinic_id,
        staff_id=appointment.staff_id,
    )
    db.refresh(appointment)
    return appointment


def update_appointment_fields(db: Session, appointment: Appointment, **fields) -> Appointment:
    """Apply field updates to an appointment and commit.

    On failure the session is rolled back, so the in-memory object is expired
    and reloads its committed (pre-update) values on next access.
    """
    for name, value in fields.items():
        if not hasattr(Appointment, name):
            raise AttributeError(f"Appointment has no field {name!r}")
        setattr(appointment, name, value)
    commit_or_rollback(
        db,
        "update_appointment",
        clinic_id=appointment.clinic_id,
        appointment_id=appointment.id,
    )
    db.refresh(appointment)
    return appointment


def insert_blocked_slot(db: Session, slot: BlockedSlot) -> BlockedSlot:
    """Persist a new blocked slot."""
    db.add(slot)
    commit_or_rollback(db, "insert_blocked_slot", clinic_id=slot.clinic_id, staff_id=slot.staff_id)
    db.refresh(slot)
    return slot


def delete_blocked_slot(db: Session, clinic_id: UUID, blocked_slot_id: UUID) -> None:
    """Delete a blocked slot ("unblock")."""
    slot = get_blocked_slot(db, clinic_id, blocked_slot_id)
    db.delete(slot)
    commit_or_rollback(db, "delete_blocked_slot", clinic_id=clinic_id, blocked_slot_id=blocked_slot_id)
