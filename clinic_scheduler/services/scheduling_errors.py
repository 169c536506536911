"""Scheduling error taxonomy.

Every error carries a stable ``kind`` and a structured ``to_outcome()`` payload
for the presentation layer; no user-facing sentences are produced here.
"""

from datetime import datetime
from typing import Any
from uuid import UUID


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SchedulingError(Exception):
    """Base exception for scheduling engine errors."""

    kind = "scheduling_error"

    def to_outcome(self) -> dict[str, Any]:
        """Structured outcome for the notification/presentation layer."""
        return {"kind": self.kind, **self.detail()}

    def detail(self) -> dict[str, Any]:
        return {}


# =============================================================================
# Validation errors (always fatal, never retried)
# =============================================================================

class ValidationError(SchedulingError):
    """Request is impossible regardless of calendar contents."""

    kind = "validation_error"


class InvalidTimeRangeError(ValidationError):
    """start >= end."""

    kind = "InvalidTimeRangeError"

    def __init__(self, start: datetime, end: datetime):
        self.start = start
        self.end = end
        super().__init__(f"Invalid time range {start.isoformat()} - {end.isoformat()}")

    def detail(self) -> dict[str, Any]:
        return {"start": _iso(self.start), "end": _iso(self.end)}


class PastSchedulingError(ValidationError):
    """Booking or move starts before the moment of the request."""

    kind = "PastSchedulingError"

    def __init__(self, start: datetime, now: datetime):
        self.start = start
        self.now = now
        super().__init__(f"Cannot schedule at {start.isoformat()}, which is in the past")

    def detail(self) -> dict[str, Any]:
        return {"start": _iso(self.start), "now": _iso(self.now)}


# =============================================================================
# Conflict errors
# =============================================================================

class ConflictError(SchedulingError):
    """Proposed range collides with the staff member's calendar."""

    kind = "conflict"
    overridable = False


class BlockedSlotConflict(ConflictError):
    """Proposed range overlaps a blocked slot. Never overridable."""

    kind = "BlockedSlotConflict"

    def __init__(
        self,
        blocked_slot_id: UUID,
        blocked_start: datetime,
        blocked_end: datetime,
        reason: str | None = None,
    ):
        self.blocked_slot_id = blocked_slot_id
        self.blocked_start = blocked_start
        self.blocked_end = blocked_end
        self.reason = reason
        super().__init__(f"Overlaps blocked slot {blocked_slot_id}")

    def detail(self) -> dict[str, Any]:
        return {
            "blocked_slot_id": str(self.blocked_slot_id),
            "blocked_start": _iso(self.blocked_start),
            "blocked_end": _iso(self.blocked_end),
            "reason": self.reason,
        }


class DoubleBookingConflict(ConflictError):
    """Proposed range overlaps another non-terminal appointment of the same staff."""

    kind = "DoubleBookingConflict"
    overridable = True

    def __init__(
        self,
        conflicting_appointment_id: UUID,
        patient_label: str | None,
        existing_start: datetime,
        existing_end: datetime,
        proposed_start: datetime,
        proposed_end: datetime,
    ):
        self.conflicting_appointment_id = conflicting_appointment_id
        self.patient_label = patient_label
        self.existing_start = existing_start
        self.existing_end = existing_end
        self.proposed_start = proposed_start
        self.proposed_end = proposed_end
        super().__init__(f"Overlaps appointment {conflicting_appointment_id}")

    def detail(self) -> dict[str, Any]:
        return {
            "conflicting_appointment_id": str(self.conflicting_appointment_id),
            "patient_label": self.patient_label,
            "existing_start": _iso(self.existing_start),
            "existing_end": _iso(self.existing_end),
            "proposed_start": _iso(self.proposed_start),
            "proposed_end": _iso(self.proposed_end),
        }


# =============================================================================
# State errors
# =============================================================================

class StateError(SchedulingError):
    """Operation not allowed in the appointment's current state."""

    kind = "state_error"


class InvalidTransitionError(StateError):
    """Transition is not in the visit transition table."""

    kind = "InvalidTransitionError"

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message or f"Cannot move from {from_status} to {to_status}")

    def detail(self) -> dict[str, Any]:
        return {"from_status": self.from_status, "to_status": self.to_status}


class TerminalAppointmentError(InvalidTransitionError):
    """Appointment is completed, cancelled or no-show."""

    def __init__(self, from_status: str, to_status: str | None = None):
        super().__init__(
            from_status,
            to_status or from_status,
            f"Appointment is {from_status} and can no longer change",
        )

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "reason": "terminal"}


class AutomaticTransitionBlockedError(InvalidTransitionError):
    """Leaving scheduled/confirmed requires an explicit staff action."""

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "reason": "manual_only"}


class StaleStatusError(InvalidTransitionError):
    """Status changed underneath the request (compare-and-swap lost)."""

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "reason": "stale"}


class PaymentRequiredError(StateError):
    """Checkout attempted before billing confirmed payment."""

    kind = "PaymentRequiredError"

    def __init__(self, appointment_id: UUID):
        self.appointment_id = appointment_id
        super().__init__(f"Payment not confirmed for appointment {appointment_id}")

    def detail(self) -> dict[str, Any]:
        return {"appointment_id": str(self.appointment_id)}


# =============================================================================
# Lookup and persistence errors
# =============================================================================

class NotFoundError(SchedulingError):
    """Entity not found in the clinic."""

    kind = "NotFoundError"

    def __init__(self, entity: str, entity_id: UUID):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")

    def detail(self) -> dict[str, Any]:
        return {"entity": self.entity, "id": str(self.entity_id)}


class PersistenceError(SchedulingError):
    """Store unreachable or write rejected; nothing was changed."""

    kind = "PersistenceError"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")

    def detail(self) -> dict[str, Any]:
        return {"operation": self.operation, "error": str(self.cause)}
