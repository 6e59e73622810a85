from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Form, HTTPException, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from memlog.config import get_settings
from memlog.db.models import User
from memlog.db.session import get_db
from memlog.services.auth_dependencies import get_current_user
from memlog.services.auth_service import create_session_token, hash_password, verify_password

router = APIRouter(tags=["auth"])
logger = structlog.get_logger("auth")


def _set_session_cookie(response: Response, user: User) -> None:
    token = create_session_token(user_id=str(user.id), email=user.email, is_admin=user.is_admin)
    settings = get_settings()
    response.set_cookie(
        key=settings.jwt_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
    )


@router.post("/auth/register")
def register(
    response: Response,
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    email_norm = email.strip().lower()
    if not email_norm or "@" not in email_norm:
        raise HTTPException(status_code=400, detail="Valid email is required")
    if len(password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")

    existing = db.execute(select(User).where(User.email == email_norm)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    # The first account administers the install.
    is_first = db.execute(select(func.count()).select_from(User)).scalar_one() == 0
    user = User(
        id=uuid.uuid4(),
        email=email_norm,
        password_hash=hash_password(password),
        is_admin=is_first,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    db.commit()
    logger.info("auth.registered", user_id=str(user.id), is_admin=user.is_admin)

    _set_session_cookie(response, user)
    return {"status": "ok"}


@router.post("/auth/login")
def login(
    response: Response,
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    email_norm = email.strip().lower()
    user = db.execute(select(User).where(User.email == email_norm)).scalar_one_or_none()
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    _set_session_cookie(response, user)
    return {"status": "ok"}


@router.post("/auth/logout")
def logout(response: Response) -> dict[str, str]:
    settings = get_settings()
    response.delete_cookie(settings.jwt_cookie_name)
    return {"status": "ok"}


@router.get("/auth/me")
def me(user: User = Depends(get_current_user)) -> dict[str, str | bool]:
    return {"id": str(user.id), "email": user.email, "is_admin": user.is_admin}
