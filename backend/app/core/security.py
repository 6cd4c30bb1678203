from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class InvalidToken(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    *,
    subject: str,
    secret: str,
    alg: str,
    expires_minutes: int,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    issued_at = datetime.now(timezone.utc)
    claims: Dict[str, Any] = dict(extra or {})
    claims.update(
        sub=subject,
        iat=int(issued_at.timestamp()),
        exp=int((issued_at + timedelta(minutes=expires_minutes)).timestamp()),
    )
    return jwt.encode(claims, secret, algorithm=alg)


def issue_staff_token(user) -> str:
    """Token for a staff account; role and display name ride along for the booking UI."""
    return create_access_token(
        subject=str(user.id),
        secret=settings.signing_key,
        alg=settings.jwt_alg,
        expires_minutes=settings.access_token_expire_minutes,
        extra={"role": user.role.value, "name": user.display_name},
    )


def decode_staff_id(token: str) -> int:
    try:
        claims = jwt.decode(token, settings.signing_key, algorithms=[settings.jwt_alg])
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc
    subject = claims.get("sub")
    if not subject or not str(subject).isdigit():
        raise InvalidToken("Token subject is not a staff id")
    return int(subject)
