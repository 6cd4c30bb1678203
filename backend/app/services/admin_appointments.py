"""Admin correction of an appointment.

Row columns (time, branch, treatment, status) are written in place; event-sourced fields
(treatment item text, plan mode, package link) only ever change through the single
``admin_update`` event appended at the end. Its ``before``/``after`` carry just the keys that
changed, so the resolver keeps older values for everything this edit did not touch.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models.appointment import Appointment, AppointmentEventType, AppointmentStatus
from app.models.user import User
from app.services.admin_status import admin_patch_status_in_transaction, parse_admin_status
from app.services.appointment_events import (
    append_appointment_event,
    diff_fields,
    resolve_current_fields,
    staff_identity_meta,
)
from app.services.appointment_fields import (
    PLAN_MODE_ONE_OFF,
    PLAN_MODE_PACKAGE,
    normalize_plan_mode,
    normalize_text,
)
from app.services.appointment_intake import parse_offset_datetime, resolve_treatment
from app.services.errors import ActorRequired, ValidationFailed
from app.services.package_hints import resolve_package_id_for_booking
from app.services.package_ledger import (
    LedgerResult,
    create_usage_by_admin,
    lock_appointment,
)

logger = logging.getLogger("booking_ledger.admin_edit")


@dataclass(frozen=True)
class AdminEditResult:
    appointment_id: str
    status: str
    changed_fields: list[str] = field(default_factory=list)
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    deduction: LedgerResult | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _utc_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _column_snapshot(appointment: Appointment) -> dict[str, Any]:
    return {
        "scheduled_at": _utc_iso(appointment.scheduled_at),
        "branch_id": appointment.branch_id,
        "treatment_id": str(appointment.treatment_id) if appointment.treatment_id else None,
        "status": appointment.status.value,
    }


def _validate_combination(
    *,
    package_id: str,
    unlink_package: bool,
    plan_mode: str,
    status: AppointmentStatus | None,
    customer_package_id: str,
) -> None:
    if package_id and unlink_package:
        raise ValidationFailed("package_id cannot be combined with unlink_package")
    if package_id and plan_mode == PLAN_MODE_ONE_OFF:
        raise ValidationFailed("package_id cannot be combined with treatment_plan_mode one_off")
    if unlink_package and plan_mode == PLAN_MODE_PACKAGE:
        raise ValidationFailed("unlink_package cannot be combined with treatment_plan_mode package")
    if status == AppointmentStatus.booked and customer_package_id:
        raise ValidationFailed("Cannot deduct package usage while setting status to booked")


def patch_admin_appointment(
    db: Session,
    *,
    appointment_id: Any,
    actor: User | None,
    scheduled_at: Any = None,
    branch_id: Any = None,
    treatment_id: Any = None,
    treatment_item_text: Any = None,
    treatment_plan_mode: Any = None,
    package_id: Any = None,
    unlink_package: bool = False,
    staff_name: Any = None,
    status: Any = None,
    customer_package_id: Any = None,
    used_mask: bool = False,
    reason: Any = None,
) -> AdminEditResult:
    if actor is None:
        raise ActorRequired("Missing admin actor identity")

    item_text = normalize_text(treatment_item_text)
    raw_plan_mode = normalize_text(treatment_plan_mode)
    plan_mode = normalize_plan_mode(raw_plan_mode)
    if raw_plan_mode and not plan_mode:
        raise ValidationFailed("treatment_plan_mode must be one of one_off|package")
    package_text = normalize_text(package_id)
    deduct_from = normalize_text(customer_package_id)
    next_status = parse_admin_status(status) if normalize_text(status) else None
    reason_text = normalize_text(reason) or None
    _validate_combination(
        package_id=package_text,
        unlink_package=bool(unlink_package),
        plan_mode=plan_mode,
        status=next_status,
        customer_package_id=deduct_from,
    )

    appointment = lock_appointment(db, appointment_id)
    before_fields = resolve_current_fields(db, appointment.id).as_dict()
    before = {**_column_snapshot(appointment), **before_fields}

    if normalize_text(scheduled_at) or isinstance(scheduled_at, datetime):
        appointment.scheduled_at = parse_offset_datetime(scheduled_at)
    branch_text = normalize_text(branch_id)
    if branch_text:
        appointment.branch_id = branch_text
    if normalize_text(treatment_id):
        appointment.treatment_id = resolve_treatment(db, treatment_id=treatment_id).id
    db.flush()

    after_fields = dict(before_fields)
    if item_text:
        after_fields["treatment_item_text"] = item_text
    if plan_mode:
        after_fields["treatment_plan_mode"] = plan_mode
    if package_text:
        resolved = resolve_package_id_for_booking(db, explicit_package_id=package_text)
        after_fields["package_id"] = str(resolved)
        if not plan_mode:
            after_fields["treatment_plan_mode"] = PLAN_MODE_PACKAGE
    unlinking = bool(before_fields["package_id"]) and (
        bool(unlink_package) or plan_mode == PLAN_MODE_ONE_OFF
    )
    if unlinking:
        after_fields["package_id"] = ""
        if after_fields["treatment_plan_mode"] == PLAN_MODE_PACKAGE:
            after_fields["treatment_plan_mode"] = PLAN_MODE_ONE_OFF

    warnings: list[str] = []
    if next_status is not None:
        status_result = admin_patch_status_in_transaction(
            db,
            appointment_id=appointment.id,
            status=next_status,
            actor=actor,
            reason=reason_text,
            record_event=False,
        )
        warnings.extend(status_result.warnings)

    deduction: LedgerResult | None = None
    if deduct_from:
        deduction = create_usage_by_admin(
            db,
            appointment_id=appointment.id,
            customer_package_id=deduct_from,
            used_mask=used_mask,
            actor=actor,
            reason=reason_text,
            staff_name=normalize_text(staff_name) or None,
        )
        # The deduction makes the earlier "no usage recorded" warning stale.
        warnings = []

    after = {**_column_snapshot(appointment), **after_fields}
    changed_before, changed_after = diff_fields(before, after)
    if not changed_after and deduction is None:
        raise ValidationFailed("No changes to apply")
    if unlinking:
        changed_after["unlink_package"] = True

    meta: dict[str, Any] = {
        "source": "admin_edit",
        **staff_identity_meta(actor, normalize_text(staff_name) or None),
        "admin_user_id": actor.id,
        "reason": reason_text,
        "before": changed_before,
        "after": changed_after,
    }
    if deduction is not None and deduction.usage is not None:
        meta["customer_package_id"] = deduction.usage.customer_package_id
        meta["session_no"] = deduction.usage.session_no
        meta["used_mask"] = deduction.usage.used_mask

    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=AppointmentEventType.admin_update,
        note=reason_text,
        meta=meta,
    )
    logger.info(
        "Admin appointment edit applied",
        extra={
            "appointment_id": str(appointment.id),
            "changed_fields": sorted(changed_after),
            "actor_id": actor.id,
        },
    )
    return AdminEditResult(
        appointment_id=str(appointment.id),
        status=appointment.status.value,
        changed_fields=sorted(changed_after),
        before=changed_before,
        after=changed_after,
        warnings=warnings,
        deduction=deduction,
    )
