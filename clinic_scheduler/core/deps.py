"""FastAPI dependencies for database access and collaborators."""

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from clinic_scheduler.db.session import SessionLocal
from clinic_scheduler.services.billing import InvoicePaymentVerifier, PaymentVerifier


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_payment_verifier(db: Session = Depends(get_db)) -> PaymentVerifier:
    """Billing collaborator consulted by the checkout guard."""
    return InvoicePaymentVerifier(db)
