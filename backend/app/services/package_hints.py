"""Map legacy free-text treatment items to catalog packages.

Older bookings only carry text such as ``"1/3 smooth 999 1 mask"`` or
``"1/1 Smooth (399) | Mask 0/0"``. Only ``smooth`` courses are recognised.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.package import CustomerPackage, CustomerPackageStatus, Package
from app.models.treatment import Treatment
from app.services.appointment_events import resolve_current_fields
from app.services.appointment_fields import normalize_text
from app.services.errors import PreconditionFailed, ValidationFailed
from app.services.package_ledger import lock_appointment

logger = logging.getLogger("booking_ledger.package_hints")

_SESSION_PROGRESS = re.compile(r"(\d+)\s*/\s*(\d+)")
_SESSION_COUNT = re.compile(r"\b(\d+)\s*(?:x|sessions?)\b")
_PRICE = re.compile(r"\b(\d{3,4})\b")
_MASK_PROGRESS = re.compile(r"(\d+)\s*/\s*(\d+)\s*mask")
_MASK_COUNT = re.compile(r"\b(\d+)\s*mask\b")
_MASK_AFTER = re.compile(r"\bmask\s*(\d+)\b")

_TREATMENT_KEYWORDS = (
    ("smooth", "smooth"),
    ("renew", "glam_renew"),
    ("glam", "glam_renew"),
    ("acne", "expert"),
    ("expert", "expert"),
)


@dataclass(frozen=True)
class PackageHint:
    sessions_total: int
    price: int | None
    mask_total: int

    @property
    def package_code(self) -> str | None:
        if not self.price:
            return None
        return f"SMOOTH_C{self.sessions_total}_{self.price}_M{self.mask_total}"


def infer_treatment_code(raw: Any) -> str | None:
    text = normalize_text(raw).lower()
    for keyword, code in _TREATMENT_KEYWORDS:
        if keyword in text:
            return code
    return None


def infer_package_hint(raw: Any) -> PackageHint | None:
    text = normalize_text(raw).lower()
    if not text or "smooth" not in text:
        return None

    sessions_total = 1
    progress = _SESSION_PROGRESS.search(text)
    if progress:
        sessions_total = int(progress.group(2))
    else:
        count = _SESSION_COUNT.search(text)
        if count and int(count.group(1)) > 0:
            sessions_total = int(count.group(1))
    if sessions_total <= 0:
        return None

    prices = [int(match.group(1)) for match in _PRICE.finditer(text)]
    prices = [value for value in prices if value >= 100]
    price = prices[0] if prices else None

    mask_total = 0
    mask_progress = _MASK_PROGRESS.search(text)
    if mask_progress:
        mask_total = int(mask_progress.group(2))
    else:
        mask_match = _MASK_COUNT.search(text) or _MASK_AFTER.search(text)
        if mask_match:
            mask_total = int(mask_match.group(1))

    return PackageHint(sessions_total=sessions_total, price=price, mask_total=mask_total)


def is_package_style_text(raw: Any) -> bool:
    hint = infer_package_hint(raw)
    if hint is None:
        return False
    return hint.sessions_total > 1 or hint.mask_total > 0


def find_package_for_hint(db: Session, hint: PackageHint) -> Package | None:
    if hint.package_code:
        by_code = db.scalar(
            select(Package)
            .where(func.upper(Package.code) == hint.package_code.upper())
            .limit(1)
        )
        if by_code is not None:
            return by_code

    stmt = select(Package).where(
        func.lower(Package.code).like("smooth%"),
        Package.sessions_total == hint.sessions_total,
    )
    if hint.price:
        stmt = stmt.where(func.coalesce(Package.price_thb, 0) == hint.price)
    if hint.sessions_total > 1:
        stmt = stmt.where(Package.mask_total == hint.mask_total)
    stmt = stmt.order_by(Package.price_thb.asc().nulls_last(), Package.id.asc()).limit(1)
    return db.scalar(stmt)


def resolve_package_id_for_booking(
    db: Session,
    *,
    explicit_package_id: Any = None,
    treatment_item_text: Any = None,
) -> UUID | None:
    """An explicit id must exist; otherwise fall back to the legacy text hint."""
    explicit = normalize_text(explicit_package_id)
    if explicit:
        try:
            package_id = UUID(explicit)
        except ValueError:
            raise ValidationFailed("Invalid package_id") from None
        if db.get(Package, package_id) is None:
            raise ValidationFailed("Package not found")
        return package_id

    hint = infer_package_hint(treatment_item_text)
    if hint is None:
        return None
    package = find_package_for_hint(db, hint)
    return package.id if package else None


def default_smooth_one_off_package(db: Session) -> Package | None:
    stmt = (
        select(Package)
        .where(func.lower(Package.code).like("smooth%"), Package.sessions_total == 1)
        .order_by(Package.price_thb.asc().nulls_last(), Package.id.asc())
        .limit(1)
    )
    return db.scalar(stmt)


def ensure_active_customer_package(
    db: Session, *, customer_id: UUID | None, package_id: UUID | None, note: str | None = None
) -> CustomerPackage | None:
    if not customer_id or not package_id:
        return None
    existing = db.scalar(
        select(CustomerPackage)
        .where(
            CustomerPackage.customer_id == customer_id,
            CustomerPackage.package_id == package_id,
            CustomerPackage.status == CustomerPackageStatus.active,
        )
        .order_by(CustomerPackage.purchased_at.desc())
        .limit(1)
    )
    if existing is not None:
        return existing

    customer_package = CustomerPackage(
        customer_id=customer_id,
        package_id=package_id,
        status=CustomerPackageStatus.active,
        note=note or "auto:sync",
    )
    db.add(customer_package)
    db.flush()
    logger.info(
        "Customer package provisioned",
        extra={
            "customer_id": str(customer_id),
            "package_id": str(package_id),
            "customer_package_id": str(customer_package.id),
        },
    )
    return customer_package


@dataclass(frozen=True)
class CourseSyncResult:
    synced: bool
    package_id: str | None = None
    customer_package_id: str | None = None
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def sync_appointment_course(db: Session, *, appointment_id: Any) -> CourseSyncResult:
    appointment = lock_appointment(db, appointment_id)
    if appointment.customer_id is None:
        raise PreconditionFailed("Appointment has no customer")

    fields = resolve_current_fields(db, appointment.id)

    package: Package | None = None
    if fields.package_id:
        try:
            package = db.get(Package, UUID(fields.package_id))
        except ValueError:
            package = None

    if package is None and fields.treatment_item_text:
        hint = infer_package_hint(fields.treatment_item_text)
        if hint is not None:
            package = find_package_for_hint(db, hint)

    if package is None:
        treatment = db.get(Treatment, appointment.treatment_id) if appointment.treatment_id else None
        if treatment is not None and (treatment.code or "").lower() == "smooth":
            package = default_smooth_one_off_package(db)

    if package is None:
        return CourseSyncResult(synced=False, reason="No package mapping found")

    customer_package = ensure_active_customer_package(
        db,
        customer_id=appointment.customer_id,
        package_id=package.id,
        note=f"auto:sync:{appointment.id}",
    )
    return CourseSyncResult(
        synced=customer_package is not None,
        package_id=str(package.id),
        customer_package_id=str(customer_package.id) if customer_package else None,
    )
