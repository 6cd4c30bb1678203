from typing import Optional

from pydantic import BaseModel


class PackagePurchase(BaseModel):
    package_id: str
    note: Optional[str] = None


class CustomerPackageOut(BaseModel):
    customer_package_id: str
    package_id: str
    package_code: str
    package_title: str
    status: str
    purchased_at: Optional[str] = None
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    mask_total: int
    mask_used: int
    mask_remaining: int
    last_session_no: int
    price_thb: Optional[int] = None
