import pytest

from app.models import AppointmentStatus
from app.services.customers import (
    list_customer_packages,
    normalize_phone,
    purchase_package,
    require_phone,
    resolve_or_create_customer_by_phone,
)
from app.services.errors import NotFound, ValidationFailed
from app.services.package_ledger import complete_appointment


def test_normalize_phone_strips_formatting():
    assert normalize_phone("+66 81-234-5678") == "66812345678"
    assert normalize_phone(None) == ""
    with pytest.raises(ValidationFailed, match="Invalid phone"):
        require_phone("02-123")


def test_resolve_or_create_customer_by_phone(db, customer):
    assert resolve_or_create_customer_by_phone(db, phone_digits="0812345678").id == customer.id

    created = resolve_or_create_customer_by_phone(db, phone_digits="0899990000", full_name="  Fah ")
    assert created.id != customer.id
    assert created.full_name == "Fah"


def test_purchase_and_list_with_remaining_counts(
    db, customer, staff_user, make_package, make_appointment
):
    package = make_package()
    view = purchase_package(db, customer_id=customer.id, package_id=str(package.id), note=" promo ")
    db.commit()
    assert view.status == "active"
    assert view.sessions_remaining == 3
    assert view.price_thb == 2999

    appointment = make_appointment()
    complete_appointment(
        db,
        appointment_id=appointment.id,
        customer_package_id=view.customer_package_id,
        used_mask=True,
        actor=staff_user,
    )
    db.commit()

    listed = list_customer_packages(db, customer_id=str(customer.id))
    assert len(listed) == 1
    assert listed[0].package_code == "SMOOTH_C3_2999_M1"
    assert listed[0].sessions_used == 1
    assert listed[0].mask_remaining == 0
    assert listed[0].last_session_no == 1
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.completed


def test_purchase_rejects_unknown_or_inactive_package(db, customer, make_package):
    with pytest.raises(NotFound, match="Package not found"):
        purchase_package(
            db, customer_id=customer.id, package_id="00000000-0000-0000-0000-000000000002"
        )

    retired = make_package(code="SMOOTH_C1_199_M0", sessions_total=1, mask_total=0, price_thb=199)
    retired.is_active = False
    db.commit()
    with pytest.raises(ValidationFailed, match="not available for purchase"):
        purchase_package(db, customer_id=customer.id, package_id=str(retired.id))


def test_list_for_unknown_customer(db):
    with pytest.raises(NotFound, match="Customer not found"):
        list_customer_packages(db, customer_id="00000000-0000-0000-0000-000000000003")
