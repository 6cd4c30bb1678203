import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-signing-key-that-is-long-enough-0123456789")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.core.settings import settings
from app.db.session import get_db
from app.models import (
    Appointment,
    AppointmentStatus,
    Base,
    Customer,
    CustomerPackage,
    CustomerPackageStatus,
    Package,
    Role,
    Treatment,
    User,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


def _persist(db, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def staff_user(db):
    return _persist(
        db,
        User(email="staff@example.com", full_name="Nok", role=Role.staff, hashed_password="unused"),
    )


@pytest.fixture
def admin_user(db):
    return _persist(
        db,
        User(email="admin@example.com", full_name="Admin Mai", role=Role.admin, hashed_password="unused"),
    )


@pytest.fixture
def customer(db):
    return _persist(db, Customer(full_name="Ploy", phone="0812345678"))


@pytest.fixture
def treatment(db):
    return _persist(db, Treatment(code="smooth", name="Smooth"))


@pytest.fixture
def make_package(db):
    def _make(code="SMOOTH_C3_2999_M1", sessions_total=3, mask_total=1, price_thb=2999, title=None):
        return _persist(
            db,
            Package(
                code=code,
                title=title or code,
                sessions_total=sessions_total,
                mask_total=mask_total,
                price_thb=price_thb,
            ),
        )

    return _make


@pytest.fixture
def make_customer_package(db, customer):
    def _make(package, owner=None, status=CustomerPackageStatus.active):
        return _persist(
            db,
            CustomerPackage(
                customer_id=(owner or customer).id,
                package_id=package.id,
                status=status,
            ),
        )

    return _make


@pytest.fixture
def make_appointment(db, customer, treatment):
    def _make(status=AppointmentStatus.booked, owner=None, scheduled_at=None, branch_id="branch-003"):
        return _persist(
            db,
            Appointment(
                customer_id=(owner or customer).id,
                treatment_id=treatment.id,
                branch_id=branch_id,
                scheduled_at=scheduled_at or datetime.now(timezone.utc) + timedelta(days=1),
                status=status,
            ),
        )

    return _make


@pytest.fixture
def api_client(db):
    from app.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    def _headers(user):
        token = create_access_token(
            subject=str(user.id),
            secret=settings.signing_key,
            alg=settings.jwt_alg,
            expires_minutes=5,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
