from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db, transaction
from app.deps import get_current_user, require_admin
from app.models.user import User
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentEventOut,
    AppointmentOut,
    CompleteRequest,
    CourseSyncOut,
    IntakeOut,
    LedgerResultOut,
    RevertOut,
    RevertRequest,
    TransitionOut,
    TransitionRequest,
)
from app.services.appointment_intake import create_staff_appointment
from app.services.appointment_queue import (
    DEFAULT_QUEUE_LIMIT,
    get_appointment_view,
    list_appointment_events,
    list_queue,
)
from app.services.appointment_transitions import cancel_appointment, mark_no_show
from app.services.package_hints import sync_appointment_course
from app.services.package_ledger import complete_appointment, revert

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=IntakeOut)
def create_appointment(
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with transaction(db):
        result = create_staff_appointment(
            db,
            actor=user,
            customer_full_name=payload.customer_full_name,
            phone=payload.phone or payload.phone_raw,
            scheduled_at=payload.scheduled_at,
            visit_date=payload.visit_date,
            visit_time_text=payload.visit_time_text,
            branch_id=payload.branch_id,
            treatment_id=payload.treatment_id,
            treatment_item_text=payload.treatment_item_text,
            treatment_plan_mode=payload.treatment_plan_mode,
            package_id=payload.package_id,
            email_or_lineid=payload.email_or_lineid,
            staff_name=payload.staff_name,
        )
    return result.as_dict()


@router.get("/queue", response_model=list[AppointmentOut])
def appointment_queue(
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
    day: date | None = Query(default=None, alias="date"),
    branch_id: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_QUEUE_LIMIT, ge=1, le=500),
):
    return list_queue(db, day=day, branch_id=branch_id, limit=limit)


@router.get("/{appointment_id}", response_model=AppointmentOut)
def get_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    return get_appointment_view(db, appointment_id=appointment_id)


@router.get("/{appointment_id}/events", response_model=list[AppointmentEventOut])
def get_appointment_events(
    appointment_id: str,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    return list_appointment_events(db, appointment_id=appointment_id)


@router.post("/{appointment_id}/complete", response_model=LedgerResultOut)
def complete(
    appointment_id: str,
    payload: CompleteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with transaction(db):
        result = complete_appointment(
            db,
            appointment_id=appointment_id,
            customer_package_id=(payload.customer_package_id or "").strip() or None,
            used_mask=payload.used_mask,
            actor=user,
            staff_name=payload.staff_name,
        )
    return result.as_dict()


@router.post("/{appointment_id}/cancel", response_model=TransitionOut)
def cancel(
    appointment_id: str,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with transaction(db):
        result = cancel_appointment(
            db,
            appointment_id=appointment_id,
            actor=user,
            note=payload.note,
            staff_name=payload.staff_name,
        )
    return result.as_dict()


@router.post("/{appointment_id}/no-show", response_model=TransitionOut)
def no_show(
    appointment_id: str,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with transaction(db):
        result = mark_no_show(
            db,
            appointment_id=appointment_id,
            actor=user,
            note=payload.note,
            staff_name=payload.staff_name,
        )
    return result.as_dict()


@router.post("/{appointment_id}/revert", response_model=RevertOut)
def revert_appointment(
    appointment_id: str,
    payload: RevertRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    with transaction(db):
        result = revert(db, appointment_id=appointment_id, actor=admin, reason=payload.reason)
    return result.as_dict()


@router.post("/{appointment_id}/sync-course", response_model=CourseSyncOut)
def sync_course(
    appointment_id: str,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    with transaction(db):
        result = sync_appointment_course(db, appointment_id=appointment_id)
    return result.as_dict()
