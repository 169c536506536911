"""Translate scheduling errors into HTTP responses."""

from fastapi import HTTPException

from clinic_scheduler.services.scheduling_errors import (
    ConflictError,
    NotFoundError,
    PaymentRequiredError,
    PersistenceError,
    SchedulingError,
    StateError,
    ValidationError,
)

# Checked in order; first match wins
_STATUS_CODES: list[tuple[type[SchedulingError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (PaymentRequiredError, 402),
    (ConflictError, 409),
    (StateError, 409),
    (PersistenceError, 503),
]


def to_http_exception(error: SchedulingError) -> HTTPException:
    """HTTPException whose detail is the structured outcome of the error."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.to_outcome())
    return HTTPException(status_code=400, detail=error.to_outcome())
