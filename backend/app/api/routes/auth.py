from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.api.deps import get_settings, require_auth
from app.core.config import Settings
from app.core.security import create_access_token
from app.db.session import get_db
from app.schemas.auth import LoginRequest, UserOut
from app.services.users import authenticate_user

router = APIRouter()


def _to_out(user) -> UserOut:  # noqa: ANN001
    return UserOut(id=user.id, username=user.username, role=user.role.value, display_name=user.display_name)


@router.post("/login", response_model=UserOut)
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = authenticate_user(db, payload.username, payload.password)
    token = create_access_token(
        subject=str(user.id),
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expires_minutes=settings.jwt_expires_minutes,
    )
    response.set_cookie(
        settings.jwt_cookie_name,
        token,
        httponly=True,
        secure=settings.environment == "production",
        samesite="lax",
        max_age=settings.jwt_expires_minutes * 60,
        path="/",
    )
    return _to_out(user)


@router.post("/logout")
def logout(response: Response, settings: Settings = Depends(get_settings)):
    response.delete_cookie(settings.jwt_cookie_name, path="/")
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(user=Depends(require_auth)):
    return _to_out(user)
