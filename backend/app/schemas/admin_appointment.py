from typing import Optional

from pydantic import BaseModel

from app.schemas.appointment import LedgerResultOut, PackageSnapshotOut


class BackdateCreate(BaseModel):
    scheduled_at: str
    branch_id: str
    treatment_id: str
    customer_full_name: str
    phone: str
    staff_name: str
    treatment_item_text: str
    reason: str
    status: Optional[str] = None
    raw_sheet_uuid: Optional[str] = None
    email_or_lineid: Optional[str] = None
    package_id: Optional[str] = None
    treatment_plan_mode: Optional[str] = None


class AdminAppointmentPatch(BaseModel):
    scheduled_at: Optional[str] = None
    branch_id: Optional[str] = None
    treatment_id: Optional[str] = None
    treatment_item_text: Optional[str] = None
    treatment_plan_mode: Optional[str] = None
    package_id: Optional[str] = None
    unlink_package: bool = False
    staff_name: Optional[str] = None
    status: Optional[str] = None
    customer_package_id: Optional[str] = None
    used_mask: bool = False
    reason: Optional[str] = None


class AdminEditOut(BaseModel):
    appointment_id: str
    status: str
    changed_fields: list[str] = []
    before: dict = {}
    after: dict = {}
    warnings: list[str] = []
    deduction: Optional[LedgerResultOut] = None


class AdminStatusPatch(BaseModel):
    status: str
    reason: Optional[str] = None


class StatusPatchOut(BaseModel):
    appointment_id: str
    before_status: str
    after_status: str
    usage_count_before: int
    usage_count_after: int
    reverted_usage_count: int
    warnings: list[str] = []


class UsageRowOut(BaseModel):
    usage_id: str
    customer_package_id: str
    session_no: int
    used_mask: bool
    used_at: Optional[str] = None


class ConsistencyOut(BaseModel):
    appointment_id: str
    status: str
    ok: bool
    usage_count: int
    usage_rows: list[UsageRowOut] = []
    packages: dict[str, PackageSnapshotOut] = {}
    resolved_fields: dict[str, str] = {}
    booked_without_usage: bool
    warnings: list[str] = []
