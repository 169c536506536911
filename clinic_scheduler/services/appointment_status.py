"""Appointment status taxonomy shared by placement, calendar views and visits."""

from clinic_scheduler.db.enums import AppointmentStatus


# UI-facing synonyms collapse to one canonical state
STATUS_SYNONYMS: dict[AppointmentStatus, AppointmentStatus] = {
    AppointmentStatus.PENDING: AppointmentStatus.SCHEDULED,
    AppointmentStatus.UNCONFIRMED: AppointmentStatus.SCHEDULED,
}

TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

# Canonical states only; synonyms are normalized before lookup.
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CHECKED_IN: frozenset({
        AppointmentStatus.IN_TREATMENT,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.IN_TREATMENT: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Leaving these requires an explicit staff action
MANUAL_ONLY_SOURCES: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
})

STATUS_LABELS: dict[str, str] = {
    AppointmentStatus.PENDING.value: "Pending",
    AppointmentStatus.UNCONFIRMED.value: "Unconfirmed",
    AppointmentStatus.SCHEDULED.value: "Scheduled",
    AppointmentStatus.CONFIRMED.value: "Confirmed",
    AppointmentStatus.CHECKED_IN.value: "Checked In",
    AppointmentStatus.IN_TREATMENT.value: "In Treatment",
    AppointmentStatus.COMPLETED.value: "Completed",
    AppointmentStatus.CANCELLED.value: "Canceled",
    AppointmentStatus.NO_SHOW.value: "No-Show",
}

# Calendar statistic buckets
CONFIRMED_BUCKET: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.CHECKED_IN,
    AppointmentStatus.IN_TREATMENT,
    AppointmentStatus.COMPLETED,
})
PENDING_BUCKET: frozenset[AppointmentStatus] = frozenset({AppointmentStatus.SCHEDULED})
CANCELLED_BUCKET: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})


def normalize_status(status: str | AppointmentStatus) -> AppointmentStatus:
    """Map a stored or requested status to its canonical state.

    Raises ValueError for values outside the taxonomy.
    """
    value = AppointmentStatus(status)
    return STATUS_SYNONYMS.get(value, value)


def is_terminal(status: str | AppointmentStatus) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES


def non_terminal_values() -> list[str]:
    """Stored values (synonyms included) that still occupy a calendar."""
    return [s.value for s in AppointmentStatus if normalize_status(s) not in TERMINAL_STATUSES]


def can_transition(current: str | AppointmentStatus, target: str | AppointmentStatus) -> bool:
    """Whether the transition table allows current -> target."""
    try:
        source = normalize_status(current)
        destination = normalize_status(target)
    except ValueError:
        return False
    return destination in ALLOWED_TRANSITIONS[source]


def status_label(status: str | None) -> str:
    """Display label for a status; unknown values are echoed back."""
    if not status:
        return STATUS_LABELS[AppointmentStatus.SCHEDULED.value]
    return STATUS_LABELS.get(status, status)
