from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db, transaction
from app.deps import require_admin
from app.models.user import User
from app.schemas.admin_appointment import (
    AdminAppointmentPatch,
    AdminEditOut,
    AdminStatusPatch,
    BackdateCreate,
    ConsistencyOut,
    StatusPatchOut,
)
from app.schemas.appointment import IntakeOut
from app.services.admin_appointments import patch_admin_appointment
from app.services.admin_status import admin_patch_status
from app.services.appointment_intake import create_backdated_appointment
from app.services.consistency import check_appointment_consistency

router = APIRouter(prefix="/admin/appointments", tags=["admin"])


@router.post("/backdate", response_model=IntakeOut)
def backdate_appointment(
    payload: BackdateCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    with transaction(db):
        result = create_backdated_appointment(db, actor=admin, **payload.model_dump())
    return result.as_dict()


@router.patch("/{appointment_id}", response_model=AdminEditOut)
def patch_appointment(
    appointment_id: str,
    payload: AdminAppointmentPatch,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    with transaction(db):
        result = patch_admin_appointment(
            db, appointment_id=appointment_id, actor=admin, **payload.model_dump()
        )
    return result.as_dict()


@router.patch("/{appointment_id}/status", response_model=StatusPatchOut)
def patch_appointment_status(
    appointment_id: str,
    payload: AdminStatusPatch,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = admin_patch_status(
        db,
        appointment_id=appointment_id,
        status=payload.status,
        actor=admin,
        reason=payload.reason,
    )
    return result.as_dict()


@router.get("/{appointment_id}/consistency", response_model=ConsistencyOut)
def appointment_consistency(
    appointment_id: str,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    return check_appointment_consistency(db, appointment_id=appointment_id).as_dict()
