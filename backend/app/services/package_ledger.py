"""Session/mask consumption ledger for customer packages.

Every function here expects to run inside the caller's transaction (see
``app.db.session.transaction``) and takes ``FOR UPDATE`` locks on the appointment, its usage
rows and the customer package it touches, always in that order. Remaining counts are never
stored: they are recounted from ``package_usages`` under the package lock on every call.

Preconditions are checked before the first write; any failure raises a ``BookingError`` and
the caller's rollback leaves nothing behind.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from app.models.appointment import (
    PRE_SERVICE_STATUSES,
    REVERTIBLE_STATUSES,
    Appointment,
    AppointmentEventType,
    AppointmentStatus,
)
from app.models.package import CustomerPackage, CustomerPackageStatus, Package, PackageUsage
from app.models.user import User
from app.services.appointment_events import (
    append_appointment_event,
    diff_fields,
    staff_identity_meta,
)
from app.services.errors import NotFound, PreconditionFailed, StateConflict, ValidationFailed
from app.services.package_continuity import (
    PackageRemaining,
    compute_remaining,
    derive_continuous_status,
    should_short_circuit_completed,
)

logger = logging.getLogger("booking_ledger.ledger")

KIND_PACKAGE = "package"
KIND_ONE_OFF = "one_off"
KIND_ADMIN_DEDUCTION = "admin_deduction"


@dataclass(frozen=True)
class UsageCounts:
    sessions_used: int = 0
    mask_used: int = 0
    last_session_no: int = 0


@dataclass(frozen=True)
class UsageSnapshot:
    customer_package_id: str
    session_no: int
    used_mask: bool


@dataclass(frozen=True)
class PackageSnapshot:
    status: str
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    mask_total: int
    mask_used: int
    mask_remaining: int

    @classmethod
    def build(cls, status: Any, remaining: PackageRemaining) -> "PackageSnapshot":
        status_text = status.value if isinstance(status, CustomerPackageStatus) else str(status)
        return cls(status=status_text, **remaining.as_dict())


@dataclass(frozen=True)
class LedgerResult:
    appointment_id: str
    status: str
    usage: UsageSnapshot | None = None
    package: PackageSnapshot | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RevertResult:
    appointment_id: str
    status: str
    previous_status: str
    reverted_usage_ids: list[str] = field(default_factory=list)
    customer_package_ids: list[str] = field(default_factory=list)
    restored_packages: dict[str, PackageSnapshot] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Deduction:
    customer_package: CustomerPackage
    package: Package
    usage: PackageUsage
    before: PackageRemaining
    after: PackageRemaining


def parse_uuid(value: Any, label: str) -> UUID:
    if isinstance(value, UUID):
        return value
    text = str(value or "").strip()
    try:
        return UUID(text)
    except ValueError:
        raise ValidationFailed(f"Invalid {label}") from None


def get_appointment(db: Session, appointment_id: Any, *, for_update: bool = False) -> Appointment:
    """Look up by appointment id, falling back to the raw sheet row id it was imported from."""
    value = parse_uuid(appointment_id, "appointment id")
    for column in (Appointment.id, Appointment.raw_sheet_uuid):
        stmt = select(Appointment).where(column == value)
        if for_update:
            stmt = stmt.with_for_update()
        appointment = db.scalar(stmt)
        if appointment is not None:
            return appointment
    raise NotFound("Appointment not found")


def lock_appointment(db: Session, appointment_id: Any) -> Appointment:
    return get_appointment(db, appointment_id, for_update=True)


def lock_customer_package(db: Session, customer_package_id: UUID) -> CustomerPackage:
    customer_package = db.scalar(
        select(CustomerPackage)
        .where(CustomerPackage.id == customer_package_id)
        .with_for_update()
    )
    if customer_package is None:
        raise NotFound("Customer package not found")
    return customer_package


def lock_usage_rows(db: Session, appointment_id: UUID) -> list[PackageUsage]:
    stmt = (
        select(PackageUsage)
        .where(PackageUsage.appointment_id == appointment_id)
        .order_by(PackageUsage.session_no.asc(), PackageUsage.used_at.asc(), PackageUsage.id.asc())
        .with_for_update()
    )
    return list(db.scalars(stmt))


def count_usage_rows(db: Session, appointment_id: UUID) -> int:
    stmt = (
        select(func.count())
        .select_from(PackageUsage)
        .where(PackageUsage.appointment_id == appointment_id)
    )
    return int(db.scalar(stmt) or 0)


def usage_counts(db: Session, customer_package_id: UUID) -> UsageCounts:
    stmt = select(
        func.count(PackageUsage.id),
        func.coalesce(func.sum(case((PackageUsage.used_mask.is_(True), 1), else_=0)), 0),
        func.coalesce(func.max(PackageUsage.session_no), 0),
    ).where(PackageUsage.customer_package_id == customer_package_id)
    sessions_used, mask_used, last_session_no = db.execute(stmt).one()
    return UsageCounts(
        sessions_used=int(sessions_used or 0),
        mask_used=int(mask_used or 0),
        last_session_no=int(last_session_no or 0),
    )


def remaining_for(db: Session, customer_package: CustomerPackage) -> PackageRemaining:
    package = customer_package.package
    counts = usage_counts(db, customer_package.id)
    return compute_remaining(
        package.sessions_total, counts.sessions_used, package.mask_total, counts.mask_used
    )


def refresh_package_status(db: Session, customer_package: CustomerPackage) -> PackageRemaining:
    remaining = remaining_for(db, customer_package)
    next_status = derive_continuous_status(customer_package.status, remaining.sessions_remaining)
    if next_status and next_status != customer_package.status.value:
        logger.info(
            "Customer package status changed",
            extra={
                "customer_package_id": str(customer_package.id),
                "from_status": customer_package.status.value,
                "to_status": next_status,
            },
        )
        customer_package.status = CustomerPackageStatus(next_status)
        db.flush()
    return remaining


def package_snapshot(db: Session, customer_package: CustomerPackage) -> PackageSnapshot:
    return PackageSnapshot.build(customer_package.status, remaining_for(db, customer_package))


def _require_customer(appointment: Appointment) -> None:
    if appointment.customer_id is None:
        raise PreconditionFailed("Appointment missing customer_id")


def _require_pre_service(appointment: Appointment, action: str) -> None:
    if appointment.status not in PRE_SERVICE_STATUSES:
        raise StateConflict(f"Cannot {action} appointment in status: {appointment.status.value}")


def _require_no_usage(db: Session, appointment: Appointment) -> None:
    if lock_usage_rows(db, appointment.id):
        raise StateConflict("Service usage already recorded for this appointment")


def deduct_session(
    db: Session,
    appointment: Appointment,
    *,
    customer_package_id: Any,
    used_mask: bool,
    actor: User | None,
    note: str | None = None,
) -> Deduction:
    package_id = parse_uuid(customer_package_id, "customer_package_id")
    customer_package = lock_customer_package(db, package_id)

    if customer_package.customer_id != appointment.customer_id:
        raise PreconditionFailed("Package does not belong to this customer")
    if customer_package.status != CustomerPackageStatus.active:
        raise StateConflict("Package is not active")

    package = customer_package.package
    counts = usage_counts(db, customer_package.id)
    before = compute_remaining(
        package.sessions_total, counts.sessions_used, package.mask_total, counts.mask_used
    )
    if before.sessions_remaining <= 0:
        raise StateConflict("No remaining sessions for this package")
    if used_mask:
        if before.mask_total <= 0:
            raise StateConflict("This package has no mask allowance")
        if before.mask_remaining <= 0:
            raise StateConflict("No remaining masks for this package")

    usage = PackageUsage(
        customer_package_id=customer_package.id,
        appointment_id=appointment.id,
        session_no=counts.last_session_no + 1,
        used_mask=bool(used_mask),
        used_at=datetime.now(timezone.utc),
        staff_user_id=actor.id if actor else None,
        note=note,
    )
    db.add(usage)
    db.flush()

    after = refresh_package_status(db, customer_package)
    return Deduction(
        customer_package=customer_package,
        package=package,
        usage=usage,
        before=before,
        after=after,
    )


def _usage_snapshot(usage: PackageUsage) -> UsageSnapshot:
    return UsageSnapshot(
        customer_package_id=str(usage.customer_package_id),
        session_no=usage.session_no,
        used_mask=bool(usage.used_mask),
    )


def _remaining_meta(remaining: PackageRemaining) -> dict[str, int]:
    return {
        "sessions_remaining": remaining.sessions_remaining,
        "mask_remaining": remaining.mask_remaining,
    }


def _record_deduction_event(
    db: Session,
    appointment: Appointment,
    deduction: Deduction,
    *,
    kind: str,
    previous_status: AppointmentStatus,
    actor: User | None,
    staff_name: str | None = None,
    reason: str | None = None,
) -> None:
    before, after = diff_fields(
        {"status": previous_status.value, **_remaining_meta(deduction.before)},
        {"status": appointment.status.value, **_remaining_meta(deduction.after)},
    )
    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=AppointmentEventType.redeemed,
        note=reason,
        meta={
            "kind": kind,
            **staff_identity_meta(actor, staff_name),
            "customer_package_id": deduction.customer_package.id,
            "package_code": deduction.package.code,
            "session_no": deduction.usage.session_no,
            "used_mask": deduction.usage.used_mask,
            "usage_id": deduction.usage.id,
            "treatment_id": appointment.treatment_id,
            "reason": reason,
            "before": before,
            "after": after,
        },
    )


def complete_with_package(
    db: Session,
    *,
    appointment_id: Any,
    customer_package_id: Any,
    used_mask: bool = False,
    actor: User | None,
    staff_name: str | None = None,
) -> LedgerResult:
    appointment = lock_appointment(db, appointment_id)
    _require_pre_service(appointment, "complete")
    _require_customer(appointment)
    _require_no_usage(db, appointment)

    deduction = deduct_session(
        db,
        appointment,
        customer_package_id=customer_package_id,
        used_mask=used_mask,
        actor=actor,
    )
    previous_status = appointment.status
    appointment.status = AppointmentStatus.completed
    db.flush()

    _record_deduction_event(
        db,
        appointment,
        deduction,
        kind=KIND_PACKAGE,
        previous_status=previous_status,
        actor=actor,
        staff_name=staff_name,
    )
    logger.info(
        "Appointment completed with package",
        extra={
            "appointment_id": str(appointment.id),
            "customer_package_id": str(deduction.customer_package.id),
            "session_no": deduction.usage.session_no,
            "used_mask": deduction.usage.used_mask,
        },
    )
    return LedgerResult(
        appointment_id=str(appointment.id),
        status=appointment.status.value,
        usage=_usage_snapshot(deduction.usage),
        package=PackageSnapshot.build(deduction.customer_package.status, deduction.after),
    )


def complete_without_package(
    db: Session,
    *,
    appointment_id: Any,
    used_mask: bool = False,
    actor: User | None,
    staff_name: str | None = None,
) -> LedgerResult:
    appointment = lock_appointment(db, appointment_id)
    _require_pre_service(appointment, "complete")
    _require_customer(appointment)
    _require_no_usage(db, appointment)
    if used_mask:
        raise PreconditionFailed("Cannot use mask without selecting a package")

    previous_status = appointment.status
    appointment.status = AppointmentStatus.completed
    db.flush()
    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=AppointmentEventType.redeemed,
        meta={
            "kind": KIND_ONE_OFF,
            **staff_identity_meta(actor, staff_name),
            "treatment_id": appointment.treatment_id,
            "raw_sheet_uuid": appointment.raw_sheet_uuid,
            "before": {"status": previous_status.value},
            "after": {"status": appointment.status.value},
        },
    )
    logger.info("Appointment completed without package", extra={"appointment_id": str(appointment.id)})
    return LedgerResult(appointment_id=str(appointment.id), status=appointment.status.value)


def complete_idempotent(db: Session, *, appointment_id: Any) -> LedgerResult:
    """Replay the result of an earlier completion without writing anything."""
    appointment = lock_appointment(db, appointment_id)
    if not should_short_circuit_completed(appointment.status):
        raise StateConflict(f"Appointment is not completed (status: {appointment.status.value})")

    usage = db.scalar(
        select(PackageUsage)
        .where(PackageUsage.appointment_id == appointment.id)
        .order_by(PackageUsage.used_at.desc(), PackageUsage.session_no.desc())
        .limit(1)
    )
    if usage is None:
        return LedgerResult(appointment_id=str(appointment.id), status=appointment.status.value)

    customer_package = db.get(CustomerPackage, usage.customer_package_id)
    return LedgerResult(
        appointment_id=str(appointment.id),
        status=appointment.status.value,
        usage=_usage_snapshot(usage),
        package=package_snapshot(db, customer_package) if customer_package else None,
    )


def complete_appointment(
    db: Session,
    *,
    appointment_id: Any,
    customer_package_id: Any = None,
    used_mask: bool = False,
    actor: User | None,
    staff_name: str | None = None,
) -> LedgerResult:
    """Completion entry point: replays when already completed, otherwise deducts or not."""
    appointment = lock_appointment(db, appointment_id)
    if should_short_circuit_completed(appointment.status):
        return complete_idempotent(db, appointment_id=appointment.id)
    if customer_package_id:
        return complete_with_package(
            db,
            appointment_id=appointment.id,
            customer_package_id=customer_package_id,
            used_mask=used_mask,
            actor=actor,
            staff_name=staff_name,
        )
    return complete_without_package(
        db,
        appointment_id=appointment.id,
        used_mask=used_mask,
        actor=actor,
        staff_name=staff_name,
    )


def delete_usage_rows(db: Session, appointment_id: UUID) -> int:
    result = db.execute(
        delete(PackageUsage)
        .where(PackageUsage.appointment_id == appointment_id)
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


def restore_packages(db: Session, customer_package_ids: list[UUID]) -> dict[str, PackageSnapshot]:
    restored: dict[str, PackageSnapshot] = {}
    for customer_package_id in customer_package_ids:
        customer_package = lock_customer_package(db, customer_package_id)
        remaining = refresh_package_status(db, customer_package)
        restored[str(customer_package_id)] = PackageSnapshot.build(customer_package.status, remaining)
    return restored


def revert(
    db: Session,
    *,
    appointment_id: Any,
    actor: User | None,
    reason: str | None = None,
) -> RevertResult:
    appointment = lock_appointment(db, appointment_id)
    previous_status = appointment.status
    if previous_status not in REVERTIBLE_STATUSES:
        raise StateConflict(
            f"Only completed, cancelled or no-show appointments can be reverted (status: {previous_status.value})"
        )

    reverted_usage_ids: list[str] = []
    touched: list[UUID] = []
    restored: dict[str, PackageSnapshot] = {}
    if previous_status == AppointmentStatus.completed:
        usage_rows = lock_usage_rows(db, appointment.id)
        for usage in usage_rows:
            reverted_usage_ids.append(str(usage.id))
            if usage.customer_package_id not in touched:
                touched.append(usage.customer_package_id)
        if usage_rows:
            delete_usage_rows(db, appointment.id)
            restored = restore_packages(db, touched)

    appointment.status = AppointmentStatus.booked
    db.flush()

    append_appointment_event(
        db,
        appointment_id=appointment.id,
        event_type=AppointmentEventType.reverted,
        note=reason or "revert usage",
        meta={
            "action": "revert",
            **staff_identity_meta(actor),
            "previous_status": previous_status.value,
            "next_status": appointment.status.value,
            "reverted_usage_ids": reverted_usage_ids,
            "customer_package_ids": [str(item) for item in touched],
            "restored_packages": {key: asdict(value) for key, value in restored.items()},
            "before": {"status": previous_status.value},
            "after": {"status": appointment.status.value},
        },
    )
    logger.info(
        "Appointment reverted",
        extra={
            "appointment_id": str(appointment.id),
            "previous_status": previous_status.value,
            "reverted_usage_count": len(reverted_usage_ids),
        },
    )
    return RevertResult(
        appointment_id=str(appointment.id),
        status=appointment.status.value,
        previous_status=previous_status.value,
        reverted_usage_ids=reverted_usage_ids,
        customer_package_ids=[str(item) for item in touched],
        restored_packages=restored,
    )


def create_usage_by_admin(
    db: Session,
    *,
    appointment_id: Any,
    customer_package_id: Any,
    used_mask: bool = False,
    actor: User | None,
    reason: str | None = None,
    staff_name: str | None = None,
) -> LedgerResult:
    """Admin deduction, also allowed on a completed appointment that has no usage yet."""
    appointment = lock_appointment(db, appointment_id)
    if appointment.status not in PRE_SERVICE_STATUSES and appointment.status != AppointmentStatus.completed:
        raise StateConflict(
            f"Cannot record usage for appointment in status: {appointment.status.value}"
        )
    _require_customer(appointment)
    _require_no_usage(db, appointment)

    deduction = deduct_session(
        db,
        appointment,
        customer_package_id=customer_package_id,
        used_mask=used_mask,
        actor=actor,
        note=reason,
    )
    previous_status = appointment.status
    appointment.status = AppointmentStatus.completed
    db.flush()

    _record_deduction_event(
        db,
        appointment,
        deduction,
        kind=KIND_ADMIN_DEDUCTION,
        previous_status=previous_status,
        actor=actor,
        staff_name=staff_name,
        reason=reason,
    )
    logger.info(
        "Admin usage recorded",
        extra={
            "appointment_id": str(appointment.id),
            "customer_package_id": str(deduction.customer_package.id),
            "session_no": deduction.usage.session_no,
            "actor_id": actor.id if actor else None,
        },
    )
    return LedgerResult(
        appointment_id=str(appointment.id),
        status=appointment.status.value,
        usage=_usage_snapshot(deduction.usage),
        package=PackageSnapshot.build(deduction.customer_package.status, deduction.after),
    )
