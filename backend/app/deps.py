from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.security import InvalidToken, decode_staff_id
from app.db.session import get_db
from app.models.user import User


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_current_user(
    db: Session = Depends(get_db), authorization: str | None = Header(default=None)
) -> User:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Missing bearer token")
    try:
        staff_id = decode_staff_id(token.strip())
    except InvalidToken:
        raise _unauthorized("Invalid token") from None

    user = db.get(User, staff_id)
    if user is None or not user.is_active:
        raise _unauthorized("Inactive user")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Owner or admin; plain staff can book and complete but not correct history."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user
