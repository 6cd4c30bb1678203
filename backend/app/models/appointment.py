from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class AppointmentStatus(str, enum.Enum):
    booked = "booked"
    rescheduled = "rescheduled"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"
    ensured = "ensured"
    confirmed = "confirmed"
    check_in = "check_in"
    checked_in = "checked_in"
    pending = "pending"


# Statuses in which the service has not happened yet; completion, cancellation
# and no-show are only allowed from here.
PRE_SERVICE_STATUSES = frozenset(
    {
        AppointmentStatus.booked,
        AppointmentStatus.rescheduled,
        AppointmentStatus.ensured,
        AppointmentStatus.confirmed,
        AppointmentStatus.check_in,
        AppointmentStatus.checked_in,
        AppointmentStatus.pending,
    }
)

REVERTIBLE_STATUSES = frozenset(
    {AppointmentStatus.completed, AppointmentStatus.no_show, AppointmentStatus.cancelled}
)


class AppointmentSource(str, enum.Enum):
    web = "WEB"
    admin = "ADMIN"
    sheet = "SHEET"


class EventActor(str, enum.Enum):
    customer = "customer"
    staff = "staff"
    system = "system"


class AppointmentEventType:
    created = "created"
    admin_update = "admin_update"
    admin_backdate_create = "admin_backdate_create"
    redeemed = "redeemed"
    reverted = "reverted"
    cancelled = "cancelled"
    no_show = "no_show"


class Appointment(Base, TimestampMixin):
    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("customers.id"), nullable=True, index=True
    )
    treatment_id: Mapped[UUID | None] = mapped_column(ForeignKey("treatments.id"), nullable=True)
    branch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.booked,
        nullable=False,
    )
    source: Mapped[AppointmentSource] = mapped_column(
        Enum(
            AppointmentSource,
            name="appointment_source",
            values_callable=lambda members: [member.value for member in members],
        ),
        default=AppointmentSource.web,
        nullable=False,
    )
    raw_sheet_uuid: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), unique=True, nullable=True
    )

    customer = relationship("Customer", back_populates="appointments")
    treatment = relationship("Treatment")
    events = relationship(
        "AppointmentEvent",
        back_populates="appointment",
        order_by="AppointmentEvent.event_at",
    )


class AppointmentEvent(Base):
    """Append-only log entry; rows are never updated or deleted."""

    __tablename__ = "appointment_events"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    appointment_id: Mapped[UUID] = mapped_column(
        ForeignKey("appointments.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    event_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    actor: Mapped[EventActor] = mapped_column(
        Enum(EventActor, name="appointment_event_actor"),
        default=EventActor.staff,
        nullable=False,
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    appointment = relationship("Appointment", back_populates="events")
