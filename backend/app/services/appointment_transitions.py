from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.models.appointment import PRE_SERVICE_STATUSES, AppointmentEventType, AppointmentStatus
from app.models.user import User
from app.services.appointment_events import append_appointment_event, staff_identity_meta
from app.services.errors import StateConflict
from app.services.package_ledger import lock_appointment

logger = logging.getLogger("booking_ledger.transitions")


@dataclass(frozen=True)
class TransitionResult:
    appointment_id: str
    previous_status: str
    status: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _close_appointment(
    db: Session,
    *,
    appointment_id: Any,
    next_status: AppointmentStatus,
    event_type: str,
    actor: User | None,
    note: str | None,
    staff_name: str | None,
) -> TransitionResult:
    appointment = lock_appointment(db, appointment_id)
    previous_status = appointment.status
    if previous_status not in PRE_SERVICE_STATUSES:
        raise StateConflict(
            f"Cannot mark {next_status.value} from status: {previous_status.value}"
        )

    appointment.status = next_status
    db.flush()
    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=event_type,
        note=note,
        meta={
            **staff_identity_meta(actor, staff_name),
            "previous_status": previous_status.value,
            "next_status": next_status.value,
            "note": note,
            "before": {"status": previous_status.value},
            "after": {"status": next_status.value},
        },
    )
    logger.info(
        "Appointment closed",
        extra={
            "appointment_id": str(appointment.id),
            "previous_status": previous_status.value,
            "status": next_status.value,
        },
    )
    return TransitionResult(
        appointment_id=str(appointment.id),
        previous_status=previous_status.value,
        status=next_status.value,
    )


def cancel_appointment(
    db: Session,
    *,
    appointment_id: Any,
    actor: User | None,
    note: str | None = None,
    staff_name: str | None = None,
) -> TransitionResult:
    return _close_appointment(
        db,
        appointment_id=appointment_id,
        next_status=AppointmentStatus.cancelled,
        event_type=AppointmentEventType.cancelled,
        actor=actor,
        note=note,
        staff_name=staff_name,
    )


def mark_no_show(
    db: Session,
    *,
    appointment_id: Any,
    actor: User | None,
    note: str | None = None,
    staff_name: str | None = None,
) -> TransitionResult:
    return _close_appointment(
        db,
        appointment_id=appointment_id,
        next_status=AppointmentStatus.no_show,
        event_type=AppointmentEventType.no_show,
        actor=actor,
        note=note,
        staff_name=staff_name,
    )
