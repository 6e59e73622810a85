from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from memlog.config import get_settings
from memlog.db.models import ActionNonce, User

CLEAR_LOGS_ACTION = "clear_logs"


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def issue(db: Session, user: User, action: str, *, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    # Spent tokens are never consulted again.
    db.execute(
        delete(ActionNonce).where(
            ActionNonce.user_id == user.id,
            ActionNonce.action == action,
            or_(ActionNonce.used_at.is_not(None), ActionNonce.expires_at <= now),
        )
    )
    token = secrets.token_urlsafe(32)
    db.add(
        ActionNonce(
            token=token,
            user_id=user.id,
            action=action,
            expires_at=now + timedelta(minutes=get_settings().nonce_ttl_minutes),
        )
    )
    db.commit()
    return token


def consume(db: Session, user: User, action: str, token: str | None, *, now: datetime | None = None) -> bool:
    """Mark a token as used. True only the first time a valid token is presented."""

    if not token:
        return False

    now = now or datetime.now(timezone.utc)
    nonce = db.execute(select(ActionNonce).where(ActionNonce.token == token)).scalar_one_or_none()
    if nonce is None or nonce.user_id != user.id or nonce.action != action:
        return False
    if nonce.used_at is not None or _aware(nonce.expires_at) <= now:
        return False

    # Conditional update so two concurrent submits cannot both succeed.
    result = db.execute(
        update(ActionNonce)
        .where(ActionNonce.token == token, ActionNonce.used_at.is_(None))
        .values(used_at=now)
    )
    db.commit()
    return result.rowcount == 1
