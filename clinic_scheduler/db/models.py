"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_scheduler.db.base import Base
from clinic_scheduler.db.enums import (
    AppointmentStatus,
    InvoiceStatus,
    TransitionTrigger,
)


class Appointment(Base):
    """
    Scheduled occupation of one staff member's time by one patient.

    Owned by the clinic; patient and staff are references only.
    Never deleted in normal operation: cancellation is a status.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointment_range"),
        Index("idx_appointments_clinic_staff_start", "clinic_id", "staff_id", "start_time"),
        Index("idx_appointments_clinic_status", "clinic_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # Display name snapshot, surfaced on double-booking conflicts
    patient_label: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Half-open placement [start_time, end_time)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)

    treatment: Mapped[str] = mapped_column(String(200), nullable=False)
    room: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_walk_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.SCHEDULED.value, nullable=False
    )

    # Visit lifecycle stamps
    checked_in_at: Mapped[datetime | None] = mapped_column(nullable=True)
    treatment_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    checked_out_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Assigned once at check-in, never reassigned
    queue_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    status_changes: Mapped[list["AppointmentStatusChange"]] = relationship(
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentStatusChange.changed_at",
    )


class BlockedSlot(Base):
    """
    Time range on a staff calendar where no appointment may be placed.

    Created by "block this time", deleted by "unblock"; no state of its own.
    """

    __tablename__ = "blocked_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_blocked_slot_range"),
        Index("idx_blocked_slots_clinic_staff_start", "clinic_id", "staff_id", "start_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class DailyQueueCounter(Base):
    """
    Per-clinic, per-business-day check-in ticket counter.

    Incremented in the same transaction that commits the check-in.
    """

    __tablename__ = "daily_queue_counters"
    __table_args__ = (
        UniqueConstraint("clinic_id", "business_date", name="uq_daily_queue_counter"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class AppointmentStatusChange(Base):
    """Audit row for every committed visit status transition."""

    __tablename__ = "appointment_status_changes"
    __table_args__ = (
        Index("idx_appointment_status_changes_appt", "appointment_id", "changed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger: Mapped[str] = mapped_column(
        String(20), default=TransitionTrigger.STAFF.value, nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="status_changes")


class Invoice(Base):
    """
    Minimal billing record.

    Only the status is read here (checkout guard); amounts are owned by billing.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        Index("idx_invoices_appointment", "appointment_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=InvoiceStatus.DRAFT.value, nullable=False
    )
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
