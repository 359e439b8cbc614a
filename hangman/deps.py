from typing import Optional

from fastapi import Depends, Request, Response
from sqlmodel import Session

from . import crud, security
from .cache import MemoryCache
from .config import Settings
from .errors import Unauthenticated
from .logging_utils import get_logger

logger = get_logger("hangman.deps")

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> MemoryCache:
    return request.app.state.cache


def get_session(request: Request):
    # one session per request, opened on the engine the app was built with
    with Session(request.app.state.engine) as session:
        yield session


def set_access_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        ACCESS_COOKIE, token, httponly=True, secure=settings.cookie_secure, samesite='lax',
        max_age=settings.access_token_ttl_minutes * 60, path='/',
    )


def set_refresh_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        REFRESH_COOKIE, token, httponly=True, secure=settings.cookie_secure, samesite='lax',
        max_age=settings.refresh_token_ttl_days * 24 * 3600, path='/',
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path='/')
    response.delete_cookie(REFRESH_COOKIE, path='/')


def _access_token_from(request: Request) -> Optional[str]:
    auth = request.headers.get('authorization')
    if auth and auth.lower().startswith('bearer '):
        return auth.split(' ', 1)[1].strip()
    return request.cookies.get(ACCESS_COOKIE)


def get_current_user_id(
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> int:
    """Resolve the caller's user id.

    Step 1 verifies the access token. If that fails, step 2 makes exactly one
    refresh attempt with the refresh cookie and re-issues the access cookie.
    Anything else is Unauthenticated.
    """
    uid = security.verify_token(settings.secret_key, _access_token_from(request), security.ACCESS)
    if uid is not None and crud.get_user(session, uid) is not None:
        return uid

    user = crud.verify_refresh_token(session, request.cookies.get(REFRESH_COOKIE), settings.secret_key)
    if user is None or user.id is None:
        raise Unauthenticated("Invalid or expired token")
    set_access_cookie(
        response, security.create_access_token(settings.secret_key, user.id, settings.access_token_ttl_minutes), settings
    )
    logger.info("access_refreshed", extra={"event": "access_refreshed", "user_id": user.id})
    return user.id
