from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.customer import Customer
from app.models.package import CustomerPackage, CustomerPackageStatus, Package
from app.services.errors import NotFound, ValidationFailed
from app.services.package_ledger import parse_uuid, remaining_for, usage_counts

logger = logging.getLogger("booking_ledger.customers")

MIN_PHONE_DIGITS = 9


def normalize_phone(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def require_phone(value: Any) -> str:
    digits = normalize_phone(value)
    if not digits:
        raise ValidationFailed("Missing required field: phone")
    if len(digits) < MIN_PHONE_DIGITS:
        raise ValidationFailed("Invalid phone")
    return digits


def get_customer(db: Session, customer_id: Any) -> Customer:
    customer = db.get(Customer, parse_uuid(customer_id, "customer id"))
    if customer is None:
        raise NotFound("Customer not found")
    return customer


def resolve_or_create_customer_by_phone(
    db: Session, *, phone_digits: str, full_name: str | None = None
) -> Customer:
    name = (full_name or "").strip()
    customer = db.scalar(select(Customer).where(Customer.phone == phone_digits))
    if customer is not None:
        if name and customer.full_name != name:
            customer.full_name = name
            db.flush()
        return customer

    customer = Customer(full_name=name or "-", phone=phone_digits)
    db.add(customer)
    db.flush()
    logger.info("Customer created", extra={"customer_id": str(customer.id)})
    return customer


@dataclass(frozen=True)
class CustomerPackageView:
    customer_package_id: str
    package_id: str
    package_code: str
    package_title: str
    status: str
    purchased_at: str | None
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    mask_total: int
    mask_used: int
    mask_remaining: int
    last_session_no: int
    price_thb: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def customer_package_view(db: Session, customer_package: CustomerPackage) -> CustomerPackageView:
    package = customer_package.package
    remaining = remaining_for(db, customer_package)
    counts = usage_counts(db, customer_package.id)
    purchased_at = customer_package.purchased_at
    return CustomerPackageView(
        customer_package_id=str(customer_package.id),
        package_id=str(package.id),
        package_code=package.code,
        package_title=package.title,
        status=customer_package.status.value,
        purchased_at=purchased_at.isoformat() if purchased_at else None,
        last_session_no=counts.last_session_no,
        price_thb=package.price_thb,
        **remaining.as_dict(),
    )


def list_customer_packages(db: Session, *, customer_id: Any) -> list[CustomerPackageView]:
    customer = get_customer(db, customer_id)
    stmt = (
        select(CustomerPackage)
        .where(CustomerPackage.customer_id == customer.id)
        .order_by(CustomerPackage.purchased_at.desc(), CustomerPackage.id.desc())
    )
    return [customer_package_view(db, row) for row in db.scalars(stmt)]


def purchase_package(
    db: Session, *, customer_id: Any, package_id: Any, note: str | None = None
) -> CustomerPackageView:
    customer = get_customer(db, customer_id)
    package_uuid: UUID = parse_uuid(package_id, "package_id")
    package = db.get(Package, package_uuid)
    if package is None:
        raise NotFound("Package not found")
    if not package.is_active:
        raise ValidationFailed("Package is not available for purchase")

    customer_package = CustomerPackage(
        customer_id=customer.id,
        package_id=package.id,
        status=CustomerPackageStatus.active,
        note=(note or "").strip() or None,
    )
    db.add(customer_package)
    db.flush()
    logger.info(
        "Package purchased",
        extra={
            "customer_id": str(customer.id),
            "package_code": package.code,
            "customer_package_id": str(customer_package.id),
        },
    )
    return customer_package_view(db, customer_package)
