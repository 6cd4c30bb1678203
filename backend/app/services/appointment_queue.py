from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.core.settings import settings
from app.models.appointment import Appointment, AppointmentEvent, AppointmentStatus
from app.schemas.appointment import AppointmentEventOut, AppointmentOut
from app.services.appointment_events import load_appointment_events, load_events_for_appointments
from app.services.appointment_fields import (
    resolve_appointment_fields,
    resolve_latest_text,
)
from app.services.appointment_intake import business_zone
from app.services.package_ledger import get_appointment

DEFAULT_QUEUE_LIMIT = 200
MAX_QUEUE_LIMIT = 500


def _appointment_out(appointment: Appointment, events: list[AppointmentEvent]) -> AppointmentOut:
    resolved = resolve_appointment_fields(events)
    scheduled_at = appointment.scheduled_at
    if scheduled_at is not None and scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
    return AppointmentOut(
        id=appointment.id,
        customer_id=appointment.customer_id,
        customer_full_name=appointment.customer.full_name if appointment.customer else None,
        treatment_id=appointment.treatment_id,
        treatment_code=appointment.treatment.code if appointment.treatment else None,
        branch_id=appointment.branch_id,
        scheduled_at=scheduled_at,
        status=appointment.status,
        source=appointment.source,
        raw_sheet_uuid=appointment.raw_sheet_uuid,
        staff_name=resolve_latest_text(events, "staff_name", "staff_display_name"),
        **resolved.as_dict(),
    )


def get_appointment_view(db: Session, *, appointment_id: Any) -> AppointmentOut:
    appointment = get_appointment(db, appointment_id)
    events = load_appointment_events(db, appointment.id)
    return _appointment_out(appointment, events)


def list_appointment_events(db: Session, *, appointment_id: Any) -> list[AppointmentEventOut]:
    appointment = get_appointment(db, appointment_id)
    return [
        AppointmentEventOut.model_validate(event)
        for event in load_appointment_events(db, appointment.id)
    ]


def _day_window(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=business_zone())
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def list_queue(
    db: Session,
    *,
    day: date | None = None,
    branch_id: str | None = None,
    limit: int = DEFAULT_QUEUE_LIMIT,
) -> list[AppointmentOut]:
    """Appointments of one business day at one branch, cancelled ones left out."""
    if day is None:
        day = datetime.now(business_zone()).date()
    start, end = _day_window(day)
    limit = max(1, min(limit, MAX_QUEUE_LIMIT))
    stmt = (
        select(Appointment)
        .where(
            Appointment.branch_id == (branch_id or settings.default_branch_id),
            Appointment.scheduled_at >= start,
            Appointment.scheduled_at < end,
            Appointment.status != AppointmentStatus.cancelled,
        )
        .options(selectinload(Appointment.customer), selectinload(Appointment.treatment))
        .order_by(Appointment.scheduled_at.asc(), Appointment.id.asc())
        .limit(limit)
    )
    appointments = list(db.scalars(stmt))

    events_by_appointment: dict[Any, list[AppointmentEvent]] = {}
    for event in load_events_for_appointments(db, [item.id for item in appointments]):
        events_by_appointment.setdefault(event.appointment_id, []).append(event)

    return [
        _appointment_out(appointment, events_by_appointment.get(appointment.id, []))
        for appointment in appointments
    ]
