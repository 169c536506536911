"""Appointment, calendar and visit enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment visit lifecycle status.

    Flow: scheduled → confirmed → checked_in → in_treatment → completed
              ↘ cancelled (any non-terminal)
              ↘ no_show (scheduled / confirmed)

    PENDING and UNCONFIRMED are UI-facing synonyms of SCHEDULED.
    """

    SCHEDULED = "scheduled"
    PENDING = "pending"
    UNCONFIRMED = "unconfirmed"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_TREATMENT = "in_treatment"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class TransitionTrigger(str, Enum):
    """Who asked for a status change."""

    STAFF = "staff"  # Explicit staff action
    AUTOMATIC = "automatic"  # System/background initiated


class CalendarViewKind(str, Enum):
    """Calendar projection granularity."""

    DAY = "day"
    WEEK = "week"  # Monday start
    MONTH = "month"


class PlacementMode(str, Enum):
    """How a placement check reports double-booking conflicts."""

    COMMIT = "commit"  # Every conflict rejects
    PREVIEW = "preview"  # Double-booking is advisory only


class InvoiceStatus(str, Enum):
    """Minimal billing status consulted by the checkout guard."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"
