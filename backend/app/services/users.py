from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import hash_password, verify_password
from app.models.user import Role, User

logger = logging.getLogger("booking_ledger.users")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == normalize_email(email)))


def authenticate(db: Session, email: str, password: str) -> User | None:
    user = get_user_by_email(db, email)
    if user is None or not user.is_active:
        return None
    return user if verify_password(password, user.hashed_password) else None


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str = "",
    role: Role = Role.staff,
) -> User:
    user = User(
        email=normalize_email(email),
        full_name=full_name.strip(),
        role=role,
        is_active=True,
        hashed_password=hash_password(password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Staff account created", extra={"user_id": user.id, "role": role.value})
    return user


def seed_initial_admin(db: Session, *, email: str, password: str) -> bool:
    """Create the owner account on an empty database only."""
    if db.scalar(select(User.id).limit(1)) is not None:
        return False
    create_user(db, email=email, password=password, full_name="Owner", role=Role.owner)
    return True
