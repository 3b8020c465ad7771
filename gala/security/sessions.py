from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from gala.auth import CurrentUser
from gala.config import settings
from gala.models import User, WebSession
from gala.services.time_utils import as_utc, now_utc


def _session_expiry() -> datetime:
    return now_utc() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db: Session, user_id: int, user_agent: str | None = None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        user_id=user_id,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def load_user_from_token(db: Session, token: str | None) -> CurrentUser | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, User)
        .join(User, User.id == WebSession.user_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = now_utc()
    if web_session.revoked_at is not None or as_utc(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return CurrentUser(
        id=user.id,
        email=user.email,
        is_super_admin=user.is_super_admin,
    )
