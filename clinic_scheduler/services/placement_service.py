"""Conflict & placement engine.

Handles:
- Booking proposals (commit and preview modes) against blocked slots and
  other non-terminal appointments of the same staff member
- Staff time blocks
- Calendar projections (day / week / month) with utilization statistics
  and a per-chair (room + staff member) breakdown
"""

import calendar
import logging
import math
from datetime import date, datetime, timedelta
from typing import NamedTuple, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.structured_logging import build_log_context
from clinic_scheduler.db.enums import AppointmentStatus, CalendarViewKind, PlacementMode
from clinic_scheduler.db.models import Appointment, BlockedSlot
from clinic_scheduler.services import calendar_store
from clinic_scheduler.services.appointment_status import (
    CANCELLED_BUCKET,
    CONFIRMED_BUCKET,
    PENDING_BUCKET,
    is_terminal,
    non_terminal_values,
    normalize_status,
)
from clinic_scheduler.services.scheduling_errors import (
    BlockedSlotConflict,
    DoubleBookingConflict,
    InvalidTimeRangeError,
    PastSchedulingError,
    SchedulingError,
)
from clinic_scheduler.services.time_ranges import (
    clipped_duration,
    get_clinic_timezone,
    is_past,
    overlaps,
    start_of_day,
    utcnow,
)

logger = logging.getLogger(__name__)

UNASSIGNED_ROOM = "Unassigned"


# =============================================================================
# Types
# =============================================================================

class PlacementDecision(NamedTuple):
    """Outcome of a placement check.

    ``conflict`` is None when the range is free. In preview mode it may hold an
    advisory (overridable) conflict that does not block the caller.
    """
    start: datetime
    end: datetime
    conflict: SchedulingError | None = None

    @property
    def ok(self) -> bool:
        return self.conflict is None


class ChairUtilization(NamedTuple):
    """Booked load of one chair (room + staff member) over a calendar window."""
    room: str
    staff_id: UUID
    appointments: int
    booked_hours: float
    utilization_percent: float
    level: str


class CalendarStats(NamedTuple):
    total: int
    confirmed: int
    pending: int
    cancelled: int
    utilization_percent: int
    booked_hours: float
    completed: int
    no_show: int
    operatories_in_use: int
    providers_scheduled: int
    empty_chair_hours: float


class CalendarView(NamedTuple):
    """Derived, non-persisted projection of a calendar window."""
    view_kind: CalendarViewKind
    first_day: date
    last_day: date
    window_start: datetime
    window_end: datetime
    appointments: list[Appointment]
    blocked_slots: list[BlockedSlot]
    stats: CalendarStats
    chairs: list[ChairUtilization]


# =============================================================================
# Booking checks
# =============================================================================

def evaluate_booking(
    staff_id: UUID,
    start: datetime,
    end: datetime,
    appointments: Sequence[Appointment],
    blocked_slots: Sequence[BlockedSlot],
    now: datetime,
    exclude_appointment_id: UUID | None = None,
) -> PlacementDecision:
    """
    Check a proposed [start, end) for one staff member. Side-effect free.

    Order of checks:
    1. start >= end
    2. start in the past
    3. overlapping blocked slot (always wins)
    4. overlapping non-terminal appointment
    """
    if start >= end:
        return PlacementDecision(start, end, InvalidTimeRangeError(start, end))
    if is_past(start, now):
        return PlacementDecision(start, end, PastSchedulingError(start, now))

    for slot in blocked_slots:
        if slot.staff_id != staff_id:
            continue
        if overlaps(start, end, slot.start_time, slot.end_time):
            return PlacementDecision(
                start,
                end,
                BlockedSlotConflict(slot.id, slot.start_time, slot.end_time, slot.reason),
            )

    for appt in appointments:
        if appt.staff_id != staff_id or appt.id == exclude_appointment_id:
            continue
        if is_terminal(appt.status):
            continue
        if overlaps(start, end, appt.start_time, appt.end_time):
            return PlacementDecision(
                start,
                end,
                DoubleBookingConflict(
                    conflicting_appointment_id=appt.id,
                    patient_label=appt.patient_label,
                    existing_start=appt.start_time,
                    existing_end=appt.end_time,
                    proposed_start=start,
                    proposed_end=end,
                ),
            )

    return PlacementDecision(start, end)


def propose_booking(
    db: Session,
    clinic_id: UUID,
    staff_id: UUID,
    start: datetime,
    end: datetime,
    exclude_appointment_id: UUID | None = None,
    mode: PlacementMode = PlacementMode.COMMIT,
    now: datetime | None = None,
    lock: bool = False,
) -> PlacementDecision:
    """
    Validate a booking against the clinic calendar.

    COMMIT mode raises on every failure. PREVIEW mode raises only on
    non-overridable failures (invalid range, past time, blocked slot) and
    returns double-booking as an advisory conflict.

    ``now`` is taken at the moment of the request, not when a form was opened.
    """
    now = now or utcnow()
    if start >= end:
        raise InvalidTimeRangeError(start, end)

    appointments = calendar_store.list_appointments(
        db,
        clinic_id,
        staff_id=staff_id,
        window_start=start,
        window_end=end,
        statuses=non_terminal_values(),
        exclude_appointment_id=exclude_appointment_id,
        lock=lock,
    )
    blocked_slots = calendar_store.list_blocked_slots(
        db, clinic_id, staff_id=staff_id, window_start=start, window_end=end
    )
    decision = evaluate_booking(
        staff_id,
        start,
        end,
        appointments,
        blocked_slots,
        now,
        exclude_appointment_id=exclude_appointment_id,
    )
    conflict = decision.conflict
    if conflict is not None:
        advisory = mode == PlacementMode.PREVIEW and getattr(conflict, "overridable", False)
        if not advisory:
            logger.info(
                "booking_rejected",
                extra=build_log_context(
                    clinic_id=clinic_id, staff_id=staff_id, kind=conflict.kind
                ),
            )
            raise conflict
    return decision


def book_appointment(
    db: Session,
    clinic_id: UUID,
    patient_id: UUID,
    staff_id: UUID,
    start: datetime,
    end: datetime,
    treatment: str,
    room: str | None = None,
    patient_label: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Create a scheduled appointment after a commit-mode placement check."""
    propose_booking(db, clinic_id, staff_id, start, end, now=now, lock=True)

    appointment = Appointment(
        clinic_id=clinic_id,
        patient_id=patient_id,
        staff_id=staff_id,
        patient_label=patient_label,
        start_time=start,
        end_time=end,
        treatment=treatment,
        room=room,
        notes=notes,
        status=AppointmentStatus.SCHEDULED.value,
    )
    appointment = calendar_store.insert_appointment(db, appointment)
    logger.info(
        "appointment_booked",
        extra=build_log_context(
            clinic_id=clinic_id, staff_id=staff_id, appointment_id=appointment.id
        ),
    )
    return appointment


# =============================================================================
# Blocked slots
# =============================================================================

def propose_block(start: datetime, end: datetime, now: datetime | None = None) -> None:
    """Reject impossible or past block ranges.

    Overlap with other blocks or bookings is deliberately not checked here.
    """
    now = now or utcnow()
    if start >= end:
        raise InvalidTimeRangeError(start, end)
    if is_past(start, now):
        raise PastSchedulingError(start, now)


def block_time(
    db: Session,
    clinic_id: UUID,
    staff_id: UUID,
    start: datetime,
    end: datetime,
    reason: str | None = None,
    now: datetime | None = None,
) -> BlockedSlot:
    """Block a range on a staff calendar."""
    propose_block(start, end, now=now)

    booked = calendar_store.list_appointments(
        db,
        clinic_id,
        staff_id=staff_id,
        window_start=start,
        window_end=end,
        statuses=non_terminal_values(),
    )
    if booked:
        logger.warning(
            f"blocked_slot_overlaps_appointments count={len(booked)}",
            extra=build_log_context(clinic_id=clinic_id, staff_id=staff_id),
        )

    slot = BlockedSlot(
        clinic_id=clinic_id,
        staff_id=staff_id,
        start_time=start,
        end_time=end,
        reason=reason.strip() if reason else None,
    )
    slot = calendar_store.insert_blocked_slot(db, slot)
    logger.info(
        "time_blocked",
        extra=build_log_context(clinic_id=clinic_id, staff_id=staff_id, blocked_slot_id=slot.id),
    )
    return slot


def unblock_time(db: Session, clinic_id: UUID, blocked_slot_id: UUID) -> None:
    """Remove a blocked slot."""
    calendar_store.delete_blocked_slot(db, clinic_id, blocked_slot_id)
    logger.info(
        "time_unblocked",
        extra=build_log_context(clinic_id=clinic_id, blocked_slot_id=blocked_slot_id),
    )


# =============================================================================
# Calendar views
# =============================================================================

def _snap_days(first_day: date, last_day: date, view_kind: CalendarViewKind) -> tuple[date, date]:
    """Expand [first_day, last_day] to whole days, Monday weeks or calendar months."""
    if last_day < first_day:
        raise ValueError("Calendar window ends before it starts")
    if view_kind == CalendarViewKind.WEEK:
        first_day = first_day - timedelta(days=first_day.weekday())
        last_day = last_day + timedelta(days=6 - last_day.weekday())
    elif view_kind == CalendarViewKind.MONTH:
        first_day = first_day.replace(day=1)
        month_days = calendar.monthrange(last_day.year, last_day.month)[1]
        last_day = last_day.replace(day=month_days)
    return first_day, last_day


def calendar_window(anchor: date, view_kind: CalendarViewKind) -> tuple[date, date]:
    """First and last day (inclusive) of the day / week / month containing anchor."""
    return _snap_days(anchor, anchor, view_kind)


def _status_or_none(value: str) -> AppointmentStatus | None:
    try:
        return normalize_status(value)
    except ValueError:
        return None


def _room_name(room: str | None) -> str | None:
    return (room or "").strip() or None


def _round_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _booked_hours(appt: Appointment, window_start: datetime, window_end: datetime) -> float:
    clipped = clipped_duration(appt.start_time, appt.end_time, window_start, window_end)
    return clipped.total_seconds() / 3600


def _utilization_percent(booked_hours: float, operatories: int, days: int) -> int:
    capacity_hours = max(operatories, 1) * days * settings.WORKING_HOURS_PER_DAY
    if capacity_hours <= 0:
        return 0
    percent = math.floor(booked_hours / capacity_hours * 100 + 0.5)
    return max(0, min(100, percent))


def utilization_level(percent: float) -> str:
    if percent >= 90:
        return "excellent"
    if percent >= 70:
        return "good"
    return "needs-improvement"


def _chair_utilization(
    active: Sequence[Appointment],
    window_start: datetime,
    window_end: datetime,
    days: int,
) -> list[ChairUtilization]:
    """Group active appointments by (room, staff member); each chair has a full working day per day."""
    capacity_hours = days * settings.WORKING_HOURS_PER_DAY
    chairs: dict[tuple[str, UUID], list[float]] = {}
    for appt in active:
        key = (_room_name(appt.room) or UNASSIGNED_ROOM, appt.staff_id)
        chairs.setdefault(key, []).append(_booked_hours(appt, window_start, window_end))

    rows = []
    for (room, staff_id), hours in sorted(chairs.items(), key=lambda item: (item[0][0], str(item[0][1]))):
        booked = sum(hours)
        percent = min(100.0, _round_tenth(booked / capacity_hours * 100)) if capacity_hours > 0 else 0.0
        rows.append(
            ChairUtilization(
                room=room,
                staff_id=staff_id,
                appointments=len(hours),
                booked_hours=_round_tenth(booked),
                utilization_percent=percent,
                level=utilization_level(percent),
            )
        )
    return rows


def build_calendar_view(
    appointments: Sequence[Appointment],
    blocked_slots: Sequence[BlockedSlot],
    window_start: date,
    window_end: date,
    view_kind: CalendarViewKind,
    tz: ZoneInfo | None = None,
) -> CalendarView:
    """
    Project appointments and blocked slots onto a calendar window.

    window_start/window_end are calendar days (inclusive), expanded to whole
    days (day), Monday-start weeks (week) or calendar months (month) in the
    clinic timezone.

    Booked time (cancelled and no-show excluded) is clipped to the window and
    measured against WORKING_HOURS_PER_DAY per operatory per day, both for the
    window as a whole and per chair.
    """
    tz = tz or get_clinic_timezone()
    first_day, last_day = _snap_days(window_start, window_end, view_kind)
    range_start = start_of_day(first_day, tz)
    range_end = start_of_day(last_day + timedelta(days=1), tz)
    days = (last_day - first_day).days + 1

    in_window = sorted(
        (a for a in appointments if overlaps(a.start_time, a.end_time, range_start, range_end)),
        key=lambda a: a.start_time,
    )
    blocks = sorted(
        (s for s in blocked_slots if overlaps(s.start_time, s.end_time, range_start, range_end)),
        key=lambda s: s.start_time,
    )

    confirmed = pending = cancelled = completed = no_show = 0
    active = []
    for appt in in_window:
        status = _status_or_none(appt.status)
        if status is None:
            continue
        if status in CONFIRMED_BUCKET:
            confirmed += 1
        elif status in PENDING_BUCKET:
            pending += 1
        elif status in CANCELLED_BUCKET:
            cancelled += 1
        if status == AppointmentStatus.COMPLETED:
            completed += 1
        elif status == AppointmentStatus.NO_SHOW:
            no_show += 1
        if status not in CANCELLED_BUCKET:
            active.append(appt)

    booked_hours = sum(_booked_hours(a, range_start, range_end) for a in active)
    operatories = len({_room_name(a.room) for a in active} - {None})
    chair_capacity = days * settings.WORKING_HOURS_PER_DAY * max(operatories, 1)

    stats = CalendarStats(
        total=len(in_window),
        confirmed=confirmed,
        pending=pending,
        cancelled=cancelled,
        utilization_percent=_utilization_percent(booked_hours, operatories, days),
        booked_hours=_round_tenth(booked_hours),
        completed=completed,
        no_show=no_show,
        operatories_in_use=operatories,
        providers_scheduled=len({a.staff_id for a in active}),
        empty_chair_hours=_round_tenth(max(0.0, chair_capacity - booked_hours)),
    )
    return CalendarView(
        view_kind=view_kind,
        first_day=first_day,
        last_day=last_day,
        window_start=range_start,
        window_end=range_end,
        appointments=in_window,
        blocked_slots=blocks,
        stats=stats,
        chairs=_chair_utilization(active, range_start, range_end, days),
    )


def get_calendar_view(
    db: Session,
    clinic_id: UUID,
    anchor: date,
    view_kind: CalendarViewKind,
    staff_id: UUID | None = None,
    tz: ZoneInfo | None = None,
) -> CalendarView:
    """Load the window around anchor from the store and project it."""
    tz = tz or get_clinic_timezone()
    first_day, last_day = calendar_window(anchor, view_kind)
    range_start = start_of_day(first_day, tz)
    range_end = start_of_day(last_day + timedelta(days=1), tz)
    appointments = calendar_store.list_appointments(
        db, clinic_id, staff_id=staff_id, window_start=range_start, window_end=range_end
    )
    blocked_slots = calendar_store.list_blocked_slots(
        db, clinic_id, staff_id=staff_id, window_start=range_start, window_end=range_end
    )
    return build_calendar_view(appointments, blocked_slots, first_day, last_day, view_kind, tz)
