import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.security import issue_staff_token
from app.db.session import get_db
from app.schemas.auth import LoginRequest, Token
from app.services.users import authenticate, get_user_by_email, normalize_email

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("booking_ledger.auth")


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    account = get_user_by_email(db, payload.email)
    if account is not None and not account.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    user = authenticate(db, payload.email, payload.password)
    if user is None:
        logger.info("Login rejected", extra={"email": normalize_email(payload.email)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return Token(access_token=issue_staff_token(user))
