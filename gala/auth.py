from dataclasses import dataclass

from fastapi import Request

from gala.config import settings
from gala.errors import UnauthorizedError


@dataclass
class CurrentUser:
    id: int
    email: str
    is_super_admin: bool


def request_token(request: Request) -> str | None:
    authorization = request.headers.get('authorization') or ''
    scheme, _, credentials = authorization.partition(' ')
    if scheme.lower() == 'bearer' and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.session_cookie_name)


def require_user(user: CurrentUser | None) -> CurrentUser:
    if user is None:
        raise UnauthorizedError()
    return user
