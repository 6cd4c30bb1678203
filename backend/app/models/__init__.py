from app.models.base import Base
from app.models.user import Role, User
from app.models.customer import Customer
from app.models.treatment import Treatment
from app.models.package import CustomerPackage, CustomerPackageStatus, Package, PackageUsage
from app.models.appointment import (
    Appointment,
    AppointmentEvent,
    AppointmentEventType,
    AppointmentSource,
    AppointmentStatus,
    EventActor,
)

__all__ = [
    "Base",
    "Role",
    "User",
    "Customer",
    "Treatment",
    "Package",
    "CustomerPackage",
    "CustomerPackageStatus",
    "PackageUsage",
    "Appointment",
    "AppointmentEvent",
    "AppointmentEventType",
    "AppointmentSource",
    "AppointmentStatus",
    "EventActor",
]
