from __future__ import annotations

from typing import Any

from app.services.appointment_fields import normalize_event_meta
from app.services.errors import StaffIdentityRequired


def resolve_staff_identity(meta: Any) -> tuple[str, str]:
    normalized = normalize_event_meta(meta)
    staff_name = normalized.flat_text("staff_name") or normalized.after_text("staff_name")
    staff_id = normalized.flat_text("staff_id") or normalized.after_text("staff_id")
    return staff_name, staff_id


def assert_event_staff_identity(meta: Any, context_label: str = "appointment event") -> tuple[str, str]:
    """Fail closed: every mutating event must name who did it."""
    staff_name, staff_id = resolve_staff_identity(meta)
    if staff_name or staff_id:
        return staff_name, staff_id
    raise StaffIdentityRequired(f"{context_label} requires meta.staff_name or meta.staff_id")
