from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gala.errors import NotFoundError, ValidationFailedError
from gala.models import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    value = (email or '').strip().lower()
    if not value or '@' not in value:
        raise ValidationFailedError('A valid email address is required')
    return value


def get_user(db: Session, *, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError('User not found')
    return user


def find_user_by_email(db: Session, *, email: str) -> User | None:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def find_or_create_user(
    db: Session,
    *,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> User:
    normalized = normalize_email(email)
    user = db.execute(select(User).where(User.email == normalized)).scalar_one_or_none()
    if user:
        return user

    try:
        with db.begin_nested():
            user = User(email=normalized, first_name=first_name, last_name=last_name, phone=phone)
            db.add(user)
            db.flush()
    except IntegrityError:
        # Created by a concurrent request between the select and the insert.
        logger.info('User %s created concurrently, reusing existing row', normalized)
        user = db.execute(select(User).where(User.email == normalized)).scalar_one()
    return user
