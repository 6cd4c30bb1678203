from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.appointment import PRE_SERVICE_STATUSES, Appointment, AppointmentStatus
from app.models.package import CustomerPackage, PackageUsage
from app.services.appointment_events import resolve_current_fields
from app.services.package_ledger import (
    PackageSnapshot,
    delete_usage_rows,
    get_appointment,
    lock_appointment,
    package_snapshot,
    restore_packages,
)

logger = logging.getLogger("booking_ledger.consistency")


@dataclass(frozen=True)
class UsageRowView:
    usage_id: str
    customer_package_id: str
    session_no: int
    used_mask: bool
    used_at: str | None


@dataclass(frozen=True)
class ConsistencyReport:
    appointment_id: str
    status: str
    usage_count: int
    usage_rows: list[UsageRowView] = field(default_factory=list)
    packages: dict[str, PackageSnapshot] = field(default_factory=dict)
    resolved_fields: dict[str, str] = field(default_factory=dict)
    booked_without_usage: bool = True
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.booked_without_usage and not self.warnings

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["ok"] = self.ok
        return payload


def check_appointment_consistency(db: Session, *, appointment_id: Any) -> ConsistencyReport:
    appointment = get_appointment(db, appointment_id)
    usages = list(
        db.scalars(
            select(PackageUsage)
            .where(PackageUsage.appointment_id == appointment.id)
            .order_by(PackageUsage.session_no.asc(), PackageUsage.used_at.asc())
        )
    )

    packages: dict[str, PackageSnapshot] = {}
    for usage in usages:
        key = str(usage.customer_package_id)
        if key in packages:
            continue
        customer_package = db.get(CustomerPackage, usage.customer_package_id)
        if customer_package is not None:
            packages[key] = package_snapshot(db, customer_package)

    warnings: list[str] = []
    if len(usages) > 1:
        warnings.append(f"Appointment has {len(usages)} package usage rows; expected at most 1")
    booked_ok = not (appointment.status == AppointmentStatus.booked and usages)
    if not booked_ok:
        warnings.append("Status is booked but package usage rows exist")
    if appointment.status == AppointmentStatus.completed and not usages:
        fields = resolve_current_fields(db, appointment.id)
        if fields.package_id:
            warnings.append("Completed with a linked package but no package usage is recorded")
    for key, snapshot in packages.items():
        if snapshot.sessions_used > snapshot.sessions_total:
            warnings.append(f"Customer package {key} is over-consumed")

    return ConsistencyReport(
        appointment_id=str(appointment.id),
        status=appointment.status.value,
        usage_count=len(usages),
        usage_rows=[
            UsageRowView(
                usage_id=str(usage.id),
                customer_package_id=str(usage.customer_package_id),
                session_no=usage.session_no,
                used_mask=bool(usage.used_mask),
                used_at=usage.used_at.isoformat() if usage.used_at else None,
            )
            for usage in usages
        ],
        packages=packages,
        resolved_fields=resolve_current_fields(db, appointment.id).as_dict(),
        booked_without_usage=booked_ok,
        warnings=warnings,
    )


@dataclass(frozen=True)
class InconsistentAppointment:
    appointment_id: str
    status: str
    usage_count: int


def find_pre_service_with_usage(db: Session) -> list[InconsistentAppointment]:
    stmt = (
        select(Appointment.id, Appointment.status, func.count(PackageUsage.id))
        .join(PackageUsage, PackageUsage.appointment_id == Appointment.id)
        .where(Appointment.status.in_(PRE_SERVICE_STATUSES))
        .group_by(Appointment.id, Appointment.status)
        .order_by(Appointment.id)
    )
    return [
        InconsistentAppointment(
            appointment_id=str(appointment_id), status=status.value, usage_count=int(count)
        )
        for appointment_id, status, count in db.execute(stmt)
    ]


def repair_pre_service_usage(db: Session, rows: list[InconsistentAppointment]) -> int:
    """Delete usage rows held by pre-service appointments and re-derive package status."""
    deleted = 0
    for row in rows:
        appointment = lock_appointment(db, row.appointment_id)
        touched: list[UUID] = list(
            db.scalars(
                select(PackageUsage.customer_package_id)
                .where(PackageUsage.appointment_id == appointment.id)
                .distinct()
            )
        )
        deleted += delete_usage_rows(db, appointment.id)
        restore_packages(db, touched)
        logger.info(
            "Removed usage rows from pre-service appointment",
            extra={"appointment_id": row.appointment_id, "status": row.status},
        )
    return deleted
