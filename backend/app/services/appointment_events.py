from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.appointment import AppointmentEvent, EventActor
from app.models.user import User
from app.services.appointment_fields import ResolvedFields, resolve_appointment_fields
from app.services.event_staff_guard import assert_event_staff_identity


def to_jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return value


def snapshot_columns(obj: Any, keys: Iterable[str]) -> dict[str, Any]:
    return {key: to_jsonable(getattr(obj, key)) for key in keys}


def diff_fields(before: Mapping[str, Any], after: Mapping[str, Any]) -> tuple[dict, dict]:
    """Keep only the keys whose value actually changed."""
    changed_before: dict[str, Any] = {}
    changed_after: dict[str, Any] = {}
    for key in after:
        old = before.get(key)
        new = after.get(key)
        if old == new:
            continue
        changed_before[key] = old
        changed_after[key] = new
    return changed_before, changed_after


def staff_identity_meta(user: User | None, staff_name: str | None = None) -> dict[str, Any]:
    explicit = (staff_name or "").strip()
    if user is None:
        return {"staff_name": explicit or None}
    display = user.display_name
    return {
        "staff_id": str(user.id),
        "staff_user_id": user.id,
        "staff_name": explicit or display,
        "staff_display_name": display,
    }


def append_appointment_event(
    db: Session,
    *,
    appointment_id: UUID,
    event_type: str,
    meta: Mapping[str, Any],
    actor: EventActor = EventActor.staff,
    note: str | None = None,
    event_at: datetime | None = None,
) -> AppointmentEvent:
    payload = to_jsonable(dict(meta))
    assert_event_staff_identity(payload, f"{event_type} event")
    event = AppointmentEvent(
        appointment_id=appointment_id,
        event_type=event_type,
        event_at=event_at or datetime.now(timezone.utc),
        actor=actor,
        note=note,
        meta=payload,
    )
    db.add(event)
    db.flush()
    return event


def load_appointment_events(db: Session, appointment_id: UUID) -> list[AppointmentEvent]:
    stmt = (
        select(AppointmentEvent)
        .where(AppointmentEvent.appointment_id == appointment_id)
        .order_by(AppointmentEvent.event_at.desc(), AppointmentEvent.id.desc())
    )
    return list(db.scalars(stmt))


def load_events_for_appointments(
    db: Session, appointment_ids: Iterable[UUID]
) -> list[AppointmentEvent]:
    ids = list(appointment_ids)
    if not ids:
        return []
    stmt = select(AppointmentEvent).where(AppointmentEvent.appointment_id.in_(ids))
    return list(db.scalars(stmt))


def resolve_current_fields(db: Session, appointment_id: UUID) -> ResolvedFields:
    return resolve_appointment_fields(load_appointment_events(db, appointment_id))
