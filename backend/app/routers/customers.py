from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db, transaction
from app.deps import get_current_user
from app.models.user import User
from app.schemas.package import CustomerPackageOut, PackagePurchase
from app.services.customers import list_customer_packages, purchase_package

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("/{customer_id}/packages", response_model=list[CustomerPackageOut])
def get_customer_packages(
    customer_id: str,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    return [view.as_dict() for view in list_customer_packages(db, customer_id=customer_id)]


@router.post(
    "/{customer_id}/packages",
    response_model=CustomerPackageOut,
    status_code=status.HTTP_201_CREATED,
)
def buy_package(
    customer_id: str,
    payload: PackagePurchase,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    with transaction(db):
        view = purchase_package(
            db, customer_id=customer_id, package_id=payload.package_id, note=payload.note
        )
    return view.as_dict()
