"""Calendar router - day, week and month projections with statistics and chair utilization."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clinic_scheduler.core.deps import get_db
from clinic_scheduler.db.enums import CalendarViewKind
from clinic_scheduler.routers.appointments import appointment_to_read
from clinic_scheduler.routers.blocked_slots import blocked_slot_to_read
from clinic_scheduler.schemas.appointment import (
    CalendarStatsRead,
    CalendarViewRead,
    ChairUtilizationRead,
)
from clinic_scheduler.services import placement_service
from clinic_scheduler.services.time_ranges import get_clinic_timezone, local_date, utcnow

router = APIRouter()


@router.get("", response_model=CalendarViewRead)
def get_calendar(
    clinic_id: UUID,
    db: Session = Depends(get_db),
    view: CalendarViewKind = Query(CalendarViewKind.WEEK),
    anchor: date | None = Query(None, alias="date", description="Any day inside the window"),
    staff_id: UUID | None = Query(None),
):
    """Calendar window containing the anchor date (defaults to today)."""
    now = utcnow()
    calendar_view = placement_service.get_calendar_view(
        db, clinic_id, anchor or local_date(now, get_clinic_timezone()), view, staff_id=staff_id
    )
    return CalendarViewRead(
        view=calendar_view.view_kind.value,
        first_day=calendar_view.first_day,
        last_day=calendar_view.last_day,
        appointments=[appointment_to_read(a, now) for a in calendar_view.appointments],
        blocked_slots=[blocked_slot_to_read(s) for s in calendar_view.blocked_slots],
        stats=CalendarStatsRead(**calendar_view.stats._asdict()),
        chairs=[ChairUtilizationRead(**c._asdict()) for c in calendar_view.chairs],
    )
