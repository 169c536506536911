"""Appointment schemas - Pydantic models for the scheduling API."""

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field


# =============================================================================
# Appointments
# =============================================================================

class AppointmentCreate(BaseModel):
    """Schema for booking an appointment (commit mode)."""
    patient_id: UUID
    staff_id: UUID
    start_time: AwareDatetime
    end_time: AwareDatetime
    treatment: str = Field(..., min_length=1, max_length=200)
    room: str | None = Field(None, max_length=50)
    patient_label: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=2000)


class WalkInCreate(BaseModel):
    """Schema for registering a walk-in patient."""
    patient_id: UUID
    staff_id: UUID
    treatment: str = Field("Walk-in", min_length=1, max_length=200)
    room: str | None = Field(None, max_length=50)
    duration_minutes: int | None = Field(None, ge=5, le=480)
    patient_label: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=2000)


class AppointmentRead(BaseModel):
    """Schema for reading an appointment."""
    id: UUID
    clinic_id: UUID
    patient_id: UUID
    staff_id: UUID
    patient_label: str | None
    start_time: datetime
    end_time: datetime
    treatment: str
    room: str | None
    notes: str | None
    is_walk_in: bool
    status: str
    status_label: str
    checked_in_at: datetime | None
    treatment_started_at: datetime | None
    checked_out_at: datetime | None
    cancelled_at: datetime | None
    queue_number: int | None
    manual_status_change_open: bool


# =============================================================================
# Reschedule
# =============================================================================

class RescheduleDrop(BaseModel):
    """Drop target: a day, plus the hour when dropped on a day/week grid."""
    target_date: date
    hour: int | None = Field(None, ge=0, le=23)


class RescheduleProposalRead(BaseModel):
    """Move proposal; conflict is advisory and may be overridden."""
    appointment_id: UUID
    original_start: datetime
    original_end: datetime
    new_start: datetime
    new_end: datetime
    conflict: dict[str, Any] | None = None


class RescheduleConfirm(BaseModel):
    """Operator-confirmed move: the same drop target that was previewed."""
    target_date: date
    hour: int | None = Field(None, ge=0, le=23)


# =============================================================================
# Visit transitions
# =============================================================================

class TransitionRequest(BaseModel):
    """Schema for a visit status change."""
    to_status: str = Field(..., min_length=1, max_length=20)
    note: str | None = Field(None, max_length=1000)


class TransitionResultRead(BaseModel):
    """Committed transition."""
    appointment: AppointmentRead
    from_status: str
    to_status: str
    queue_number: int | None


# =============================================================================
# Blocked slots
# =============================================================================

class BlockedSlotCreate(BaseModel):
    """Schema for blocking time on a staff calendar."""
    staff_id: UUID
    start_time: AwareDatetime
    end_time: AwareDatetime
    reason: str | None = Field(None, max_length=255)


class BlockedSlotRead(BaseModel):
    """Schema for reading a blocked slot."""
    id: UUID
    clinic_id: UUID
    staff_id: UUID
    start_time: datetime
    end_time: datetime
    reason: str | None


# =============================================================================
# Calendar
# =============================================================================

class CalendarStatsRead(BaseModel):
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


class ChairUtilizationRead(BaseModel):
    """Booked load of one room + staff member pair."""
    room: str
    staff_id: UUID
    appointments: int
    booked_hours: float
    utilization_percent: float
    level: Literal["excellent", "good", "needs-improvement"]


class CalendarViewRead(BaseModel):
    """Projection of a day, week or month."""
    view: Literal["day", "week", "month"]
    first_day: date
    last_day: date
    appointments: list[AppointmentRead]
    blocked_slots: list[BlockedSlotRead]
    stats: CalendarStatsRead
    chairs: list[ChairUtilizationRead]
