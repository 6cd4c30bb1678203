from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.session import transaction
from app.models.appointment import AppointmentEventType, AppointmentStatus
from app.models.user import User
from app.services.appointment_events import append_appointment_event, staff_identity_meta
from app.services.errors import ActorRequired, InvariantViolation, ValidationFailed
from app.services.package_ledger import (
    count_usage_rows,
    delete_usage_rows,
    lock_appointment,
    lock_usage_rows,
    restore_packages,
)

logger = logging.getLogger("booking_ledger.admin_status")

ADMIN_PATCH_STATUSES = tuple(status.value for status in AppointmentStatus)
_STATUS_ALIASES = {"canceled": AppointmentStatus.cancelled.value}


def normalize_status(value: Any) -> str:
    if isinstance(value, AppointmentStatus):
        return value.value
    normalized = str(value or "").strip().lower()
    return _STATUS_ALIASES.get(normalized, normalized)


def parse_admin_status(value: Any) -> AppointmentStatus:
    normalized = normalize_status(value)
    if not normalized:
        raise ValidationFailed("Missing status patch value")
    if normalized not in ADMIN_PATCH_STATUSES:
        raise ValidationFailed(f"status must be one of {'|'.join(ADMIN_PATCH_STATUSES)}")
    return AppointmentStatus(normalized)


@dataclass(frozen=True)
class StatusPatchResult:
    appointment_id: str
    before_status: str
    after_status: str
    usage_count_before: int
    usage_count_after: int
    reverted_usage_count: int
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _usage_warning(status: AppointmentStatus) -> str:
    if status == AppointmentStatus.completed:
        return (
            "Status is completed but no package usage is recorded. "
            "Use complete service flow to apply deduction."
        )
    return f"Status is {status.value} but no package usage is recorded."


def admin_patch_status_in_transaction(
    db: Session,
    *,
    appointment_id: Any,
    status: Any,
    actor: User | None,
    reason: str | None = None,
    record_event: bool = True,
) -> StatusPatchResult:
    """Overwrite an appointment status and reconcile its usage rows.

    Moving to ``booked`` deletes every usage row of the appointment and re-derives the status
    of each package they pointed at. If rows still exist afterwards ``InvariantViolation`` is
    raised and the caller must roll the whole transaction back. Any other target status with
    no usage is allowed and only reported in ``warnings``.
    """
    next_status = parse_admin_status(status)
    if actor is None:
        raise ActorRequired("Missing admin actor identity")

    appointment = lock_appointment(db, appointment_id)
    usage_rows = lock_usage_rows(db, appointment.id)
    usage_count_before = len(usage_rows)
    before_status = appointment.status

    reverted_usage_count = 0
    if next_status == AppointmentStatus.booked and usage_rows:
        touched: list[UUID] = []
        for usage in usage_rows:
            if usage.customer_package_id not in touched:
                touched.append(usage.customer_package_id)
        reverted_usage_count = delete_usage_rows(db, appointment.id)
        restore_packages(db, touched)

    if appointment.status != next_status:
        appointment.status = next_status
        db.flush()

    usage_count_after = count_usage_rows(db, appointment.id)
    if next_status == AppointmentStatus.booked and usage_count_after != 0:
        logger.error(
            "Usage invariant failed after status patch",
            extra={
                "appointment_id": str(appointment.id),
                "status": next_status.value,
                "usage_count_after": usage_count_after,
            },
        )
        raise InvariantViolation(
            f"Invariant violation: expected 0 package_usages for status {next_status.value}, "
            f"found {usage_count_after}",
            details={"usage_count_after": usage_count_after},
        )

    warnings: list[str] = []
    if next_status != AppointmentStatus.booked and usage_count_after == 0:
        warnings.append(_usage_warning(next_status))
        logger.warning(
            "Status patched without package usage",
            extra={"appointment_id": str(appointment.id), "status": next_status.value},
        )

    if record_event and before_status != next_status:
        append_appointment_event(
            db,
            appointment_id=appointment.id,
            event_type=AppointmentEventType.admin_update,
            note=reason,
            meta={
                "source": "admin_status_patch",
                **staff_identity_meta(actor),
                "reason": reason,
                "reverted_usage_count": reverted_usage_count,
                "before": {"status": before_status.value},
                "after": {"status": next_status.value},
            },
        )

    logger.info(
        "Appointment status patched",
        extra={
            "appointment_id": str(appointment.id),
            "before_status": before_status.value,
            "after_status": next_status.value,
            "reverted_usage_count": reverted_usage_count,
            "actor_id": actor.id,
        },
    )
    return StatusPatchResult(
        appointment_id=str(appointment.id),
        before_status=before_status.value,
        after_status=appointment.status.value,
        usage_count_before=usage_count_before,
        usage_count_after=usage_count_after,
        reverted_usage_count=reverted_usage_count,
        warnings=warnings,
    )


def admin_patch_status(
    db: Session,
    *,
    appointment_id: Any,
    status: Any,
    actor: User | None,
    reason: str | None = None,
) -> StatusPatchResult:
    with transaction(db):
        return admin_patch_status_in_transaction(
            db,
            appointment_id=appointment_id,
            status=status,
            actor=actor,
            reason=reason,
        )
