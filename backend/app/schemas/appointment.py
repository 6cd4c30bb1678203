from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.models.appointment import AppointmentSource, AppointmentStatus, EventActor


class AppointmentCreate(BaseModel):
    customer_full_name: str
    phone: Optional[str] = None
    phone_raw: Optional[str] = None
    scheduled_at: Optional[str] = None
    visit_date: Optional[str] = None
    visit_time_text: Optional[str] = None
    branch_id: Optional[str] = None
    treatment_id: Optional[str] = None
    treatment_item_text: Optional[str] = None
    treatment_plan_mode: Optional[str] = None
    package_id: Optional[str] = None
    email_or_lineid: Optional[str] = None
    staff_name: Optional[str] = None


class IntakeOut(BaseModel):
    appointment_id: str
    customer_id: str
    status: str
    package_id: Optional[str] = None
    customer_package_id: Optional[str] = None


class CompleteRequest(BaseModel):
    customer_package_id: Optional[str] = None
    used_mask: bool = False
    staff_name: Optional[str] = None


class TransitionRequest(BaseModel):
    note: Optional[str] = None
    staff_name: Optional[str] = None


class RevertRequest(BaseModel):
    reason: Optional[str] = None


class UsageOut(BaseModel):
    customer_package_id: str
    session_no: int
    used_mask: bool


class PackageSnapshotOut(BaseModel):
    status: str
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    mask_total: int
    mask_used: int
    mask_remaining: int


class LedgerResultOut(BaseModel):
    appointment_id: str
    status: str
    usage: Optional[UsageOut] = None
    package: Optional[PackageSnapshotOut] = None


class RevertOut(BaseModel):
    appointment_id: str
    status: str
    previous_status: str
    reverted_usage_ids: list[str] = []
    customer_package_ids: list[str] = []
    restored_packages: dict[str, PackageSnapshotOut] = {}


class TransitionOut(BaseModel):
    appointment_id: str
    previous_status: str
    status: str


class CourseSyncOut(BaseModel):
    synced: bool
    package_id: Optional[str] = None
    customer_package_id: Optional[str] = None
    reason: Optional[str] = None


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: Optional[UUID] = None
    customer_full_name: Optional[str] = None
    treatment_id: Optional[UUID] = None
    treatment_code: Optional[str] = None
    branch_id: str
    scheduled_at: datetime
    status: AppointmentStatus
    source: AppointmentSource
    raw_sheet_uuid: Optional[UUID] = None
    package_id: str = ""
    treatment_plan_mode: str = ""
    treatment_item_text: str = ""
    staff_name: str = ""


class AppointmentEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    appointment_id: UUID
    event_type: str
    event_at: Optional[datetime] = None
    actor: EventActor
    note: Optional[str] = None
    meta: dict[str, Any]
