from fastapi import Depends, Request
from sqlalchemy.orm import Session

from gala.auth import CurrentUser, request_token, require_user
from gala.db import get_db
from gala.security.sessions import load_user_from_token
from gala.services.provider_factory import get_payment_provider


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser | None:
    user = load_user_from_token(db, request_token(request))
    if user is not None:
        db.commit()
    return user


def get_current_user(user: CurrentUser | None = Depends(get_optional_user)) -> CurrentUser:
    return require_user(user)


def get_provider():
    return get_payment_provider()
