from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

from app.models.appointment import AppointmentStatus
from app.models.package import CustomerPackageStatus


def to_non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(parsed):
        return 0
    return max(int(parsed), 0)


@dataclass(frozen=True)
class PackageRemaining:
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    mask_total: int
    mask_used: int
    mask_remaining: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def compute_remaining(
    sessions_total: Any = 0,
    sessions_used: Any = 0,
    mask_total: Any = 0,
    mask_used: Any = 0,
) -> PackageRemaining:
    safe_sessions_total = to_non_negative_int(sessions_total)
    safe_sessions_used = to_non_negative_int(sessions_used)
    safe_mask_total = to_non_negative_int(mask_total)
    safe_mask_used = to_non_negative_int(mask_used)
    return PackageRemaining(
        sessions_total=safe_sessions_total,
        sessions_used=safe_sessions_used,
        sessions_remaining=max(safe_sessions_total - safe_sessions_used, 0),
        mask_total=safe_mask_total,
        mask_used=safe_mask_used,
        mask_remaining=max(safe_mask_total - safe_mask_used, 0),
    )


def _status_text(status: Any) -> str:
    if isinstance(status, CustomerPackageStatus):
        return status.value
    if status is None:
        return ""
    return str(status).strip().lower()


def derive_continuous_status(current_status: Any, sessions_remaining: Any) -> str:
    """The only place a customer package status is decided."""
    current = _status_text(current_status)
    remaining = to_non_negative_int(sessions_remaining)
    if current == CustomerPackageStatus.active.value and remaining <= 0:
        return CustomerPackageStatus.completed.value
    if current == CustomerPackageStatus.completed.value and remaining > 0:
        return CustomerPackageStatus.active.value
    return current


def should_short_circuit_completed(status: Any) -> bool:
    if isinstance(status, AppointmentStatus):
        return status == AppointmentStatus.completed
    return str(status or "").strip().lower() == AppointmentStatus.completed.value
