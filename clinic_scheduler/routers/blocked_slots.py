"""Blocked slots router - block and unblock staff time."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clinic_scheduler.core.deps import get_db
from clinic_scheduler.core.http_errors import to_http_exception
from clinic_scheduler.db.models import BlockedSlot
from clinic_scheduler.schemas.appointment import BlockedSlotCreate, BlockedSlotRead
from clinic_scheduler.services import calendar_store, placement_service
from clinic_scheduler.services.scheduling_errors import SchedulingError
from clinic_scheduler.services.time_ranges import as_utc

router = APIRouter()


def blocked_slot_to_read(slot: BlockedSlot) -> BlockedSlotRead:
    """Convert BlockedSlot model to read schema."""
    return BlockedSlotRead(
        id=slot.id,
        clinic_id=slot.clinic_id,
        staff_id=slot.staff_id,
        start_time=slot.start_time,
        end_time=slot.end_time,
        reason=slot.reason,
    )


@router.get("", response_model=list[BlockedSlotRead])
def list_blocked_slots(
    clinic_id: UUID,
    db: Session = Depends(get_db),
    staff_id: UUID | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
):
    """List blocked slots, optionally for one staff member and time window."""
    slots = calendar_store.list_blocked_slots(
        db, clinic_id, staff_id=staff_id, window_start=as_utc(start), window_end=as_utc(end)
    )
    return [blocked_slot_to_read(s) for s in slots]


@router.post("", response_model=BlockedSlotRead, status_code=201)
def block_time(
    clinic_id: UUID,
    data: BlockedSlotCreate,
    db: Session = Depends(get_db),
):
    """Block a range on a staff calendar."""
    try:
        slot = placement_service.block_time(
            db,
            clinic_id=clinic_id,
            staff_id=data.staff_id,
            start=data.start_time,
            end=data.end_time,
            reason=data.reason,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return blocked_slot_to_read(slot)


@router.delete("/{blocked_slot_id}", status_code=204)
def unblock_time(
    clinic_id: UUID,
    blocked_slot_id: UUID,
    db: Session = Depends(get_db),
):
    """Remove a blocked slot."""
    try:
        placement_service.unblock_time(db, clinic_id, blocked_slot_id)
    except SchedulingError as e:
        raise to_http_exception(e)
