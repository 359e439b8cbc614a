from contextlib import asynccontextmanager
from fastapi import APIRouter, FastAPI, Depends, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, validator
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Optional

from . import crud, models, security
from .cache import MemoryCache, cache_leaderboard, get_cached_leaderboard, invalidate_leaderboard_cache
from .config import Settings
from .deps import (
    REFRESH_COOKIE,
    clear_auth_cookies,
    get_cache,
    get_current_user_id,
    get_session,
    get_settings,
    set_access_cookie,
    set_refresh_cookie,
)
from .errors import HangmanError, InvalidStateError, NotFoundError, Unauthenticated
from .game import GameSession, ensure_no_active_game
from .init_db import create_db_engine, init_db
from .logging_utils import setup_logging, get_logger, request_id_ctx

import logging
import re
import time
import uuid


setup_logging(logging.INFO)
logger = get_logger("hangman")


def check_rate_limit(store: dict, client_ip: str, max_requests: int = 30, window_seconds: int = 60) -> bool:
    """Sliding-window limit per client IP. Returns True if the request is allowed."""
    now = time.time()
    cutoff = now - window_seconds
    recent = [t for t in store.get(client_ip, []) if t > cutoff]
    if len(recent) >= max_requests:
        store[client_ip] = recent
        return False
    recent.append(now)
    store[client_ip] = recent
    return True


def rate_limit_dependency(max_requests: int = 30, window_seconds: int = 60):
    """Create a dependency that raises HTTP 429 once a client exceeds the limit"""
    def dependency(request: Request):
        buckets = request.app.state.rate_limits
        store = buckets.setdefault((request.url.path, max_requests, window_seconds), {})
        client_ip = request.client.host if request.client else "unknown"
        if not check_rate_limit(store, client_ip, max_requests, window_seconds):
            raise HTTPException(status_code=429, detail="Too many requests, slow down")
    return dependency


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers['Content-Security-Policy'] = " ".join([
            "default-src 'self'",
            "script-src 'self'",
            "style-src 'self' 'unsafe-inline'",
            "img-src 'self' data:",
            "connect-src 'self'",
            "object-src 'none'",
            "frame-ancestors 'none'",
        ])
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        except Exception:
            logger.exception("request_error", extra={"path": request.url.path, "method": request.method})
            raise
        finally:
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": getattr(response, "status_code", 500),
                    "duration_ms": int((time.time() - start) * 1000),
                    "client": request.client.host if request.client else "-",
                    "user_agent": request.headers.get("user-agent", "-"),
                },
            )
            request_id_ctx.reset(token)


async def hangman_error_handler(request: Request, exc: HangmanError):
    logger.warning(
        exc.message,
        extra={"event": "domain_error", "error": exc.code, "path": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("validation_error", extra={"method": request.method, "url": str(request.url), "errors": exc.errors()})
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "message": "Input validation failed"},
    )


# -- request bodies ---------------------------------------------------------

_NAME_RE = re.compile(r'^[A-Za-z0-9_-]+$')
_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class SignUpRequest(BaseModel):
    name: str = Field(..., min_length=3, max_length=20)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=128)

    @validator('name')
    def validate_name(cls, v):
        v = v.strip()
        if len(v) < 3:
            raise ValueError('Name must be at least 3 characters long')
        if not _NAME_RE.match(v):
            raise ValueError('Name can only contain letters, numbers, underscore, and hyphen')
        return v

    @validator('email')
    def validate_email(cls, v):
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError('Invalid email format')
        return v

    @validator('password')
    def validate_password(cls, v):
        if not re.search(r'[A-Za-z]', v) or not re.search(r'\d', v):
            raise ValueError('Password must contain at least one letter and one number')
        return v


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class GameActionRequest(BaseModel):
    game_id: Optional[str] = Field(None, max_length=64)


class GuessRequest(GameActionRequest):
    # length is checked loosely here; the game rejects anything but one letter
    letter: str = Field(..., max_length=8)


# -- helpers ----------------------------------------------------------------

def _user_payload(u: models.User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def _issue_tokens(session: Session, response: Response, user: models.User, settings: Settings) -> None:
    refresh = crud.issue_refresh_token(session, user, settings.secret_key, settings.refresh_token_ttl_days)
    access = security.create_access_token(settings.secret_key, user.id, settings.access_token_ttl_minutes)
    set_access_cookie(response, access, settings)
    set_refresh_cookie(response, refresh, settings)


def _on_game_finished(cache: MemoryCache, gs: GameSession) -> None:
    invalidate_leaderboard_cache(cache)
    logger.info(
        "game_finished",
        extra={
            "event": "game_finished",
            "user_id": gs.user_id,
            "game_id": gs.id,
            "game_status": gs.game_status,
            "wrong_guesses": gs.wrong_guesses,
            "hints_used": gs.hints_used,
        },
    )


def _expire_if_stale(session: Session, cache: MemoryCache, gs: GameSession) -> bool:
    """Finalize an abandoned game as lost. Returns True if it was expired."""
    if not gs.is_expired():
        return False
    crud.update_terminal_status(session, gs.id, models.LOST, gs.wrong_guesses, gs.hints_used)
    gs.game_status = models.LOST
    _on_game_finished(cache, gs)
    return True


def _load_game_session(session: Session, cache: MemoryCache, user_id: int, game_id: Optional[str]) -> GameSession:
    if game_id:
        g = crud.get_game(session, game_id)
        if g is None or g.user_id != user_id:
            raise NotFoundError("game not found")
    else:
        g = crud.get_active_game(session, user_id)
        if g is None:
            raise InvalidStateError("No game in progress")
    gs = GameSession.from_record(g)
    if _expire_if_stale(session, cache, gs):
        raise InvalidStateError("Game expired", extra={"game_id": gs.id})
    return gs


router = APIRouter()


@router.get("/health", include_in_schema=False)
def health():
    return {"status": "ok"}


@router.get("/api/cache/stats", include_in_schema=False)
def cache_stats(cache: MemoryCache = Depends(get_cache)):
    return {"cache_stats": cache.get_stats(), "status": "ok"}


# -- auth -------------------------------------------------------------------

@router.post("/api/auth/sign-up", status_code=201)
def sign_up(
    body: SignUpRequest,
    response: Response,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    _: None = Depends(rate_limit_dependency(max_requests=5, window_seconds=300)),
):
    u = crud.create_user(session, body.name, body.email, body.password)
    _issue_tokens(session, response, u, settings)
    logger.info("user_created", extra={"event": "user_created", "user_id": u.id})
    return {"message": "User created successfully", "user": _user_payload(u)}


@router.post("/api/auth/sign-in")
def sign_in(
    body: SignInRequest,
    response: Response,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    _: None = Depends(rate_limit_dependency(max_requests=10, window_seconds=60)),
):
    u = crud.authenticate_user(session, body.email, body.password)
    if u is None:
        raise Unauthenticated("Invalid credentials")
    _issue_tokens(session, response, u, settings)
    return {"message": "Login successful", "user": _user_payload(u)}


@router.post("/api/auth/refresh")
def refresh(
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    u = crud.verify_refresh_token(session, request.cookies.get(REFRESH_COOKIE), settings.secret_key)
    if u is None or u.id is None:
        raise Unauthenticated("Invalid or expired refresh token")
    set_access_cookie(response, security.create_access_token(settings.secret_key, u.id, settings.access_token_ttl_minutes), settings)
    return {"message": "Token refreshed successfully", "user": _user_payload(u)}


@router.post("/api/auth/logout")
def logout(request: Request, response: Response, session: Session = Depends(get_session)):
    crud.revoke_refresh_token(session, request.cookies.get(REFRESH_COOKIE))
    clear_auth_cookies(response)
    return {"message": "Logout successful"}


@router.get("/api/auth/me")
def me(user_id: int = Depends(get_current_user_id), session: Session = Depends(get_session)):
    u = crud.get_user(session, user_id)
    if u is None:
        raise Unauthenticated("User not found")
    return {"user": _user_payload(u)}


# -- game -------------------------------------------------------------------

@router.post("/api/game/start", status_code=201)
def start_game(
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    cache: MemoryCache = Depends(get_cache),
):
    active = crud.get_active_game(session, user_id)
    if active is not None and _expire_if_stale(session, cache, GameSession.from_record(active)):
        active = None
    ensure_no_active_game(active.id if active is not None else None)
    entry = crud.get_random_word(session)
    gs = GameSession.start(
        user_id,
        entry['word'],
        [entry['hint1'], entry['hint2']],
        max_wrong_guesses=settings.max_wrong_guesses,
        max_hints=settings.max_hints,
        ttl_minutes=settings.game_ttl_minutes or None,
    )
    crud.create_game(session, gs)
    logger.info("game_started", extra={"event": "game_started", "user_id": user_id, "game_id": gs.id})
    return {"game": gs.as_view()}


@router.get("/api/game/current")
def current_game(
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    cache: MemoryCache = Depends(get_cache),
):
    g = crud.get_active_game(session, user_id)
    if g is None:
        return {"active": False}
    gs = GameSession.from_record(g)
    if _expire_if_stale(session, cache, gs):
        return {"active": False}
    return {"active": True, "game": gs.as_view()}


@router.post("/api/game/guess")
def guess_letter(
    body: GuessRequest,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    cache: MemoryCache = Depends(get_cache),
    _: None = Depends(rate_limit_dependency(max_requests=120, window_seconds=60)),
):
    gs = _load_game_session(session, cache, user_id, body.game_id)
    result = gs.guess_letter(body.letter)
    if result.changed:
        crud.save_game_session(session, gs)
        if gs.is_terminal:
            _on_game_finished(cache, gs)
    return {"result": result.as_dict(), "game": gs.as_view()}


@router.post("/api/game/hint")
def use_hint(
    body: Optional[GameActionRequest] = None,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    cache: MemoryCache = Depends(get_cache),
):
    gs = _load_game_session(session, cache, user_id, body.game_id if body else None)
    hint = gs.use_hint()
    crud.save_game_session(session, gs)
    return {"hint": hint, "hints_used": gs.hints_used, "remaining_hints": gs.remaining_hints, "game": gs.as_view()}


@router.post("/api/game/surrender")
def surrender(
    body: Optional[GameActionRequest] = None,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    cache: MemoryCache = Depends(get_cache),
):
    gs = _load_game_session(session, cache, user_id, body.game_id if body else None)
    gs.surrender()
    crud.save_game_session(session, gs)
    _on_game_finished(cache, gs)
    return {"game": gs.as_view()}


@router.get("/api/game/history")
def history(
    limit: int = 20,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="Limit must be between 1 and 100")
    games = crud.list_games_for_user(session, user_id, limit=limit)
    return {"games": [GameSession.from_record(g).as_view() for g in games]}


@router.get("/api/game/stats")
def stats(
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    u = crud.get_user(session, user_id)
    if u is None:
        raise NotFoundError("User not found")
    return {
        "user": {"id": u.id, "name": u.name, "email": u.email},
        "stats": crud.get_user_stats(session, user_id, min_games=settings.leaderboard_min_games),
    }


@router.get("/api/game/leaderboard")
def leaderboard(
    limit: Optional[int] = None,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    cache: MemoryCache = Depends(get_cache),
    _: None = Depends(rate_limit_dependency(max_requests=20, window_seconds=60)),
):
    limit = settings.leaderboard_size if limit is None else limit
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="Limit must be between 1 and 100")

    leaders = get_cached_leaderboard(cache, limit)
    if leaders is None:
        leaders = crud.get_leaderboard(session, limit=limit, min_games=settings.leaderboard_min_games)
        cache_leaderboard(cache, limit, leaders, ttl_minutes=settings.leaderboard_cache_minutes)
    return {"success": True, "leaderboard": leaders, "total_players": len(leaders)}


# -- application ------------------------------------------------------------

def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Pass an engine to skip database setup at startup."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_engine = app.state.engine is None
        if owns_engine:
            app.state.engine = init_db(create_db_engine(settings.database_url))
        try:
            yield
        finally:
            if owns_engine:
                app.state.engine.dispose()
                app.state.engine = None

    app = FastAPI(title="Hangman", lifespan=lifespan)
    app.state.engine = engine
    app.state.settings = settings
    app.state.cache = MemoryCache()
    app.state.rate_limits = {}

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"],
    )
    app.add_exception_handler(HangmanError, hangman_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(router)
    return app


app = create_app()
