"""Billing collaborator used by the checkout guard."""

from typing import Protocol
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from clinic_scheduler.db.enums import InvoiceStatus
from clinic_scheduler.db.models import Invoice


class PaymentVerifier(Protocol):
    """Answers whether an appointment's payment has been confirmed."""

    def is_payment_confirmed(self, appointment_id: UUID) -> bool: ...


class InvoicePaymentVerifier:
    """Payment is confirmed once any invoice linked to the appointment is paid."""

    def __init__(self, db: Session):
        self.db = db

    def is_payment_confirmed(self, appointment_id: UUID) -> bool:
        paid = self.db.execute(
            select(Invoice.id).where(
                and_(
                    Invoice.appointment_id == appointment_id,
                    Invoice.status == InvoiceStatus.PAID.value,
                )
            ).limit(1)
        ).scalar_one_or_none()
        return paid is not None
