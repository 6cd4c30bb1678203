from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.appointment import (
    Appointment,
    AppointmentEventType,
    AppointmentSource,
    AppointmentStatus,
)
from app.models.treatment import Treatment
from app.models.user import User
from app.services.appointment_events import append_appointment_event, staff_identity_meta
from app.services.appointment_fields import (
    PLAN_MODE_PACKAGE,
    normalize_plan_mode,
    normalize_text,
)
from app.services.customers import require_phone, resolve_or_create_customer_by_phone
from app.services.errors import PreconditionFailed, StateConflict, ValidationFailed
from app.services.package_hints import (
    ensure_active_customer_package,
    infer_treatment_code,
    resolve_package_id_for_booking,
)

logger = logging.getLogger("booking_ledger.intake")

_OFFSET_SUFFIX = re.compile(r"([zZ]|[+-]\d{2}:?\d{2})$")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME = re.compile(r"^\d{2}:\d{2}$")

# Statuses that hold a slot at a branch.
SLOT_HOLDING_STATUSES = (AppointmentStatus.booked, AppointmentStatus.rescheduled)
BACKDATE_STATUSES = (AppointmentStatus.completed, AppointmentStatus.booked)
MIN_REASON_LENGTH = 5


def require_text(value: Any, field_name: str) -> str:
    text = normalize_text(value)
    if not text:
        raise ValidationFailed(f"Missing required field: {field_name}")
    return text


def parse_offset_datetime(value: Any, field_name: str = "scheduled_at") -> datetime:
    """Parse an ISO datetime that must carry an explicit UTC offset; returns UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise ValidationFailed(f"{field_name} must include timezone offset")
        return value.astimezone(timezone.utc)
    raw = require_text(value, field_name)
    if not _OFFSET_SUFFIX.search(raw):
        raise ValidationFailed(
            f"{field_name} must include timezone offset (e.g. 2026-02-05T14:00:00+07:00)"
        )
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationFailed(f"{field_name} must be a valid ISO datetime") from None
    return parsed.astimezone(timezone.utc)


def business_zone() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def parse_visit_slot(visit_date: Any, visit_time_text: Any) -> datetime:
    """Legacy booking form payload: local date and HH:MM in the business timezone."""
    date_text = require_text(visit_date, "visit_date")
    time_text = require_text(visit_time_text, "visit_time_text")
    if not _DATE.match(date_text):
        raise ValidationFailed("Invalid visit_date format. Use YYYY-MM-DD")
    if not _TIME.match(time_text):
        raise ValidationFailed("Invalid visit_time_text format. Use HH:MM")
    try:
        local = datetime.strptime(f"{date_text} {time_text}", "%Y-%m-%d %H:%M")
    except ValueError:
        raise ValidationFailed("Invalid visit_date or visit_time_text") from None
    return local.replace(tzinfo=business_zone()).astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_optional_uuid(value: Any, field_name: str) -> UUID | None:
    text = normalize_text(value)
    if not text:
        return None
    try:
        return UUID(text)
    except ValueError:
        raise ValidationFailed(f"Invalid {field_name}") from None


def resolve_treatment(
    db: Session, *, treatment_id: Any = None, treatment_item_text: Any = None
) -> Treatment:
    explicit = _parse_optional_uuid(treatment_id, "treatment_id")
    if explicit is not None:
        treatment = db.get(Treatment, explicit)
        if treatment is None:
            raise ValidationFailed("Treatment not found")
        return treatment

    if not normalize_text(treatment_item_text):
        raise ValidationFailed("Missing required field: treatment_id")
    code = infer_treatment_code(treatment_item_text)
    if code is None:
        raise PreconditionFailed("Unable to infer treatment_id from treatment_item_text")
    treatment = db.scalar(select(Treatment).where(Treatment.code == code).limit(1))
    if treatment is None:
        raise PreconditionFailed("Treatment not found")
    return treatment


def _assert_slot_free(db: Session, *, branch_id: str, scheduled_at: datetime) -> None:
    collision = db.scalar(
        select(Appointment.id)
        .where(
            Appointment.branch_id == branch_id,
            Appointment.scheduled_at == scheduled_at,
            Appointment.status.in_(SLOT_HOLDING_STATUSES),
        )
        .limit(1)
    )
    if collision is not None:
        raise StateConflict("Time slot is already booked")


@dataclass(frozen=True)
class IntakeResult:
    appointment_id: str
    customer_id: str
    status: str
    package_id: str | None = None
    customer_package_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def create_staff_appointment(
    db: Session,
    *,
    actor: User | None,
    customer_full_name: Any,
    phone: Any,
    scheduled_at: Any = None,
    visit_date: Any = None,
    visit_time_text: Any = None,
    branch_id: Any = None,
    treatment_id: Any = None,
    treatment_item_text: Any = None,
    treatment_plan_mode: Any = None,
    package_id: Any = None,
    email_or_lineid: Any = None,
    staff_name: Any = None,
) -> IntakeResult:
    if normalize_text(scheduled_at) or isinstance(scheduled_at, datetime):
        slot = parse_offset_datetime(scheduled_at)
    else:
        slot = parse_visit_slot(visit_date, visit_time_text)
    if slot <= _now():
        raise ValidationFailed("scheduled_at must be in the future")

    branch = normalize_text(branch_id) or settings.default_branch_id
    full_name = require_text(customer_full_name, "customer_full_name")
    phone_digits = require_phone(phone)
    item_text = normalize_text(treatment_item_text)
    plan_mode = normalize_plan_mode(treatment_plan_mode)

    treatment = resolve_treatment(db, treatment_id=treatment_id, treatment_item_text=item_text)
    _assert_slot_free(db, branch_id=branch, scheduled_at=slot)
    resolved_package_id = resolve_package_id_for_booking(
        db, explicit_package_id=package_id, treatment_item_text=item_text
    )

    customer = resolve_or_create_customer_by_phone(db, phone_digits=phone_digits, full_name=full_name)
    email_text = normalize_text(email_or_lineid)
    if email_text and not customer.email_or_lineid:
        customer.email_or_lineid = email_text

    appointment = Appointment(
        customer_id=customer.id,
        treatment_id=treatment.id,
        branch_id=branch,
        scheduled_at=slot,
        status=AppointmentStatus.booked,
        source=AppointmentSource.web,
    )
    db.add(appointment)
    db.flush()

    meta: dict[str, Any] = {
        "source": "staff_create",
        **staff_identity_meta(actor, normalize_text(staff_name) or None),
        "scheduled_at": slot,
        "branch_id": branch,
        "treatment_id": treatment.id,
        "customer_id": customer.id,
        "customer_full_name": full_name,
        "phone": phone_digits,
        "email_or_lineid": email_text or None,
        "treatment_item_text": item_text or None,
    }
    if resolved_package_id is not None:
        meta["package_id"] = resolved_package_id
        meta["treatment_plan_mode"] = plan_mode or PLAN_MODE_PACKAGE
    elif plan_mode:
        meta["treatment_plan_mode"] = plan_mode

    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=AppointmentEventType.created,
        meta=meta,
    )
    logger.info(
        "Staff appointment created",
        extra={
            "appointment_id": str(appointment.id),
            "branch_id": branch,
            "actor_id": actor.id if actor else None,
        },
    )
    return IntakeResult(
        appointment_id=str(appointment.id),
        customer_id=str(customer.id),
        status=appointment.status.value,
        package_id=str(resolved_package_id) if resolved_package_id else None,
    )


def create_backdated_appointment(
    db: Session,
    *,
    actor: User | None,
    scheduled_at: Any,
    branch_id: Any,
    treatment_id: Any,
    customer_full_name: Any,
    phone: Any,
    staff_name: Any,
    treatment_item_text: Any,
    reason: Any,
    status: Any = None,
    raw_sheet_uuid: Any = None,
    email_or_lineid: Any = None,
    package_id: Any = None,
    treatment_plan_mode: Any = None,
) -> IntakeResult:
    """Record a visit that already happened. Never deducts package usage."""
    slot = parse_offset_datetime(scheduled_at)
    if slot >= _now():
        raise ValidationFailed("scheduled_at must be in the past")
    branch = require_text(branch_id, "branch_id")
    require_text(treatment_id, "treatment_id")
    full_name = require_text(customer_full_name, "customer_full_name")
    staff = require_text(staff_name, "staff_name")
    item_text = require_text(treatment_item_text, "treatment_item_text")
    reason_text = require_text(reason, "reason")
    if len(reason_text) < MIN_REASON_LENGTH:
        raise ValidationFailed(f"reason must be at least {MIN_REASON_LENGTH} characters")
    phone_digits = require_phone(phone)
    sheet_uuid = _parse_optional_uuid(raw_sheet_uuid, "raw_sheet_uuid")

    status_text = normalize_text(status).lower()
    next_status = AppointmentStatus.completed
    for candidate in BACKDATE_STATUSES:
        if status_text == candidate.value:
            next_status = candidate

    treatment = resolve_treatment(db, treatment_id=treatment_id)
    if sheet_uuid is not None:
        duplicate = db.scalar(
            select(Appointment.id).where(Appointment.raw_sheet_uuid == sheet_uuid).limit(1)
        )
        if duplicate is not None:
            raise StateConflict("Duplicate record")

    customer = resolve_or_create_customer_by_phone(db, phone_digits=phone_digits, full_name=full_name)
    email_text = normalize_text(email_or_lineid)
    if email_text and not customer.email_or_lineid:
        customer.email_or_lineid = email_text

    resolved_package_id = resolve_package_id_for_booking(
        db, explicit_package_id=package_id, treatment_item_text=item_text
    )
    customer_package = ensure_active_customer_package(
        db,
        customer_id=customer.id,
        package_id=resolved_package_id,
        note="auto:admin_backdate",
    )

    appointment = Appointment(
        customer_id=customer.id,
        treatment_id=treatment.id,
        branch_id=branch,
        scheduled_at=slot,
        status=next_status,
        source=AppointmentSource.admin,
        raw_sheet_uuid=sheet_uuid,
    )
    db.add(appointment)
    db.flush()

    plan_mode = normalize_plan_mode(treatment_plan_mode)
    meta: dict[str, Any] = {
        "source": "admin_backdate",
        **staff_identity_meta(actor, staff),
        "scheduled_at": slot,
        "branch_id": branch,
        "treatment_id": treatment.id,
        "status": next_status.value,
        "customer_full_name": full_name,
        "phone": phone_digits,
        "email_or_lineid": email_text or None,
        "treatment_item_text": item_text,
        "raw_sheet_uuid": sheet_uuid,
        "reason": reason_text,
    }
    if resolved_package_id is not None:
        meta["package_id"] = resolved_package_id
        meta["treatment_plan_mode"] = plan_mode or PLAN_MODE_PACKAGE
        meta["customer_package_id"] = customer_package.id if customer_package else None
    elif plan_mode:
        meta["treatment_plan_mode"] = plan_mode

    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=AppointmentEventType.admin_backdate_create,
        note=reason_text,
        meta=meta,
    )
    logger.info(
        "Backdated appointment created",
        extra={
            "appointment_id": str(appointment.id),
            "status": next_status.value,
            "actor_id": actor.id if actor else None,
        },
    )
    return IntakeResult(
        appointment_id=str(appointment.id),
        customer_id=str(customer.id),
        status=appointment.status.value,
        package_id=str(resolved_package_id) if resolved_package_id else None,
        customer_package_id=str(customer_package.id) if customer_package else None,
    )
