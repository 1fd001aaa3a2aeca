from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.security import decode_access_token
from app.db.session import get_db
from app.models.enums import BACKUP_ROLES, UserRole
from app.models.user import User
from app.services.retention import SnapshotRetention
from app.services.scheduler import BackupScheduler


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_retention(request: Request) -> SnapshotRetention:
    return request.app.state.retention


def get_scheduler(request: Request) -> BackupScheduler:
    return request.app.state.backup_scheduler


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    token = request.cookies.get(settings.jwt_cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(token, secret=settings.jwt_secret, algorithm=settings.jwt_algorithm)
    except (JWTError, KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    user = db.query(User).filter(User.id == int(payload.sub)).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def require_auth(user: User = Depends(get_current_user)) -> User:
    return user


def require_roles(*roles: UserRole) -> Callable[[User], User]:
    allowed = frozenset(roles)

    def _require(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _require


require_backup_operator = require_roles(*BACKUP_ROLES)
