from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class CustomerPackageStatus(str, enum.Enum):
    active = "active"
    completed = "completed"


class Package(Base, TimestampMixin):
    __tablename__ = "packages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    sessions_total: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    mask_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_thb: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CustomerPackage(Base):
    __tablename__ = "customer_packages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customers.id"), nullable=False, index=True
    )
    package_id: Mapped[UUID] = mapped_column(ForeignKey("packages.id"), nullable=False)
    status: Mapped[CustomerPackageStatus] = mapped_column(
        Enum(CustomerPackageStatus, name="customer_package_status"),
        default=CustomerPackageStatus.active,
        nullable=False,
    )
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    customer = relationship("Customer", back_populates="packages")
    package = relationship("Package")


class PackageUsage(Base):
    __tablename__ = "package_usages"
    __table_args__ = (
        UniqueConstraint("appointment_id", name="package_usages_appointment_id_key"),
        UniqueConstraint(
            "customer_package_id", "session_no", name="package_usages_package_session_key"
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_package_id: Mapped[UUID] = mapped_column(
        ForeignKey("customer_packages.id"), nullable=False, index=True
    )
    appointment_id: Mapped[UUID] = mapped_column(ForeignKey("appointments.id"), nullable=False)
    session_no: Mapped[int] = mapped_column(Integer, nullable=False)
    used_mask: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    staff_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
