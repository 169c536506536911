"""Structured logging helpers (PHI-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    clinic_id: UUID | str | None = None,
    staff_id: UUID | str | None = None,
    appointment_id: UUID | str | None = None,
    blocked_slot_id: UUID | str | None = None,
    kind: str | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict.

    Patient labels are never accepted here; identifiers and statuses only.
    """
    context: dict[str, Any] = {}
    if clinic_id:
        context["clinic_id"] = str(clinic_id)
    if staff_id:
        context["staff_id"] = str(staff_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if blocked_slot_id:
        context["blocked_slot_id"] = str(blocked_slot_id)
    if kind:
        context["kind"] = kind
    if from_status:
        context["from_status"] = from_status
    if to_status:
        context["to_status"] = to_status
    return context
