"""Pydantic schemas for API request/response models."""

from clinic_scheduler.schemas.appointment import (
    AppointmentCreate,
    AppointmentRead,
    BlockedSlotCreate,
    BlockedSlotRead,
    CalendarStatsRead,
    CalendarViewRead,
    ChairUtilizationRead,
    RescheduleConfirm,
    RescheduleDrop,
    RescheduleProposalRead,
    TransitionRequest,
    TransitionResultRead,
    WalkInCreate,
)

__all__ = [
    "AppointmentCreate",
    "AppointmentRead",
    "BlockedSlotCreate",
    "BlockedSlotRead",
    "CalendarStatsRead",
    "CalendarViewRead",
    "ChairUtilizationRead",
    "RescheduleConfirm",
    "RescheduleDrop",
    "RescheduleProposalRead",
    "TransitionRequest",
    "TransitionResultRead",
    "WalkInCreate",
]
