from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.core.security import hash_password, verify_password
from app.models.enums import UserRole
from app.models.user import User

logger = logging.getLogger(__name__)


def authenticate_user(db: Session, username: str, password: str) -> User:
    user = db.query(User).filter(User.username == username).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not verify_password(password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return user


def create_user(
    db: Session,
    *,
    username: str,
    password: str,
    role: UserRole = UserRole.MENTOR,
    display_name: str | None = None,
) -> User:
    exists = db.query(User).filter(User.username == username).first()
    if exists:
        return exists
    user = User(username=username, password_hash=hash_password(password), role=role, display_name=display_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def ensure_bootstrap_admin(db: Session, *, username: str, password: str) -> User | None:
    """Create the first ADMIN account on an empty users table; no-op otherwise."""
    if db.query(User).first():
        return None
    logger.info("Seeding bootstrap admin %r", username)
    return create_user(db, username=username, password=password, role=UserRole.ADMIN, display_name="Administrator")
