from sqlmodel import Session, select as sqlmodel_select, col
from sqlalchemy import func, desc, update as sa_update
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timezone
from typing import Dict, List, Optional
import random

from . import models, security
from .errors import ConflictError, DependencyError, InvalidStateError, NotFoundError, ValidationError
from .game import GameSession
from .leaderboard import LEADERBOARD_SIZE, MIN_COMPLETED_GAMES, placement_for, rank_players
from .logging_utils import get_logger
from .stats import compute_user_stats

logger = get_logger("hangman.crud")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -- users ----------------------------------------------------------------


def get_user(session: Session, user_id: int) -> Optional[models.User]:
    return session.get(models.User, user_id)


def get_user_by_email(session: Session, email: str) -> Optional[models.User]:
    return session.exec(
        sqlmodel_select(models.User).where(models.User.email == email.strip().lower())
    ).first()


def get_user_by_name(session: Session, name: str) -> Optional[models.User]:
    return session.exec(sqlmodel_select(models.User).where(models.User.name == name)).first()


def create_user(session: Session, name: str, email: str, password: str) -> models.User:
    email = email.strip().lower()
    if get_user_by_email(session, email):
        raise ConflictError("User with this email already exists")
    if get_user_by_name(session, name):
        raise ConflictError("User with this name already exists")
    u = models.User(name=name, email=email, password_hash=security.hash_password(password), created_at=_now())
    session.add(u)
    try:
        session.commit()
    except IntegrityError:
        # lost a race against a concurrent sign-up
        session.rollback()
        raise ConflictError("User with this name or email already exists")
    session.refresh(u)
    return u


def authenticate_user(session: Session, email: str, password: str) -> Optional[models.User]:
    u = get_user_by_email(session, email)
    if u is None or not security.verify_password(password, u.password_hash):
        return None
    return u


def issue_refresh_token(session: Session, user: models.User, secret: str, ttl_days: int) -> str:
    if user.id is None:
        raise ValidationError("user has no id")
    token = security.create_refresh_token(secret, user.id, ttl_days)
    user.refresh_token = token
    session.add(user)
    session.commit()
    session.refresh(user)
    return token


def verify_refresh_token(session: Session, token: Optional[str], secret: str) -> Optional[models.User]:
    """Return the owner of a valid refresh token that is still the one on record."""
    uid = security.verify_token(secret, token, security.REFRESH)
    if uid is None:
        return None
    u = session.get(models.User, uid)
    if u is None or not u.refresh_token or u.refresh_token != token:
        return None
    return u


def revoke_refresh_token(session: Session, token: Optional[str]) -> bool:
    if not token:
        return False
    u = session.exec(sqlmodel_select(models.User).where(models.User.refresh_token == token)).first()
    if u is None:
        return False
    u.refresh_token = None
    session.add(u)
    session.commit()
    return True


def get_user_names(session: Session, user_ids) -> Dict[int, str]:
    ids = list(set(user_ids))
    if not ids:
        return {}
    rows = session.exec(
        sqlmodel_select(models.User.id, models.User.name).where(col(models.User.id).in_(ids))
    ).all()
    return {uid: name for uid, name in rows}


# -- word supplier --------------------------------------------------------


def count_words(session: Session) -> int:
    return int(session.exec(sqlmodel_select(func.count(models.Word.id))).one() or 0)


def get_random_word(session: Session, rng: Optional[random.Random] = None) -> dict:
    """Return {word, hint1, hint2} for a random word in the corpus."""
    total = count_words(session)
    if total == 0:
        raise DependencyError("No words found in database")
    idx = (rng or random).randrange(total)
    w = session.exec(
        sqlmodel_select(models.Word).order_by(models.Word.id).offset(idx).limit(1)
    ).first()
    if w is None:
        raise DependencyError("Failed to fetch random word")
    return {'word': w.word, 'hint1': w.hint1, 'hint2': w.hint2}


# -- games ----------------------------------------------------------------


def get_game(session: Session, game_id: str) -> Optional[models.Game]:
    return session.get(models.Game, game_id)


def get_active_game(session: Session, user_id: int) -> Optional[models.Game]:
    return session.exec(
        sqlmodel_select(models.Game)
        .where(models.Game.user_id == user_id)
        .where(models.Game.game_status == models.IN_PROGRESS)
        .order_by(desc(models.Game.created_at))
    ).first()


def list_games_for_user(session: Session, user_id: int, limit: Optional[int] = None) -> List[models.Game]:
    """A user's games, newest first."""
    stmt = (
        sqlmodel_select(models.Game)
        .where(models.Game.user_id == user_id)
        .order_by(desc(models.Game.created_at))
    )
    if isinstance(limit, int) and limit > 0:
        stmt = stmt.limit(limit)
    return list(session.exec(stmt).all())


def list_completed_games(session: Session) -> List[models.Game]:
    return list(session.exec(
        sqlmodel_select(models.Game)
        .where(col(models.Game.game_status).in_(models.TERMINAL_STATUSES))
        .order_by(models.Game.created_at)
    ).all())


def create_game(session: Session, gs: GameSession) -> models.Game:
    record = gs.to_record()
    session.add(record)
    try:
        session.commit()
    except IntegrityError:
        # the partial unique index allows one in_progress game per user
        session.rollback()
        active = get_active_game(session, gs.user_id)
        raise ConflictError(
            "You already have an active game. Please finish it before starting a new one.",
            game_id=active.id if active else None,
        )
    session.refresh(record)
    logger.info("game_created", extra={"event": "game_created", "game_id": record.id, "user_id": record.user_id})
    return record


def save_game_session(session: Session, gs: GameSession) -> None:
    """Write a mutated session back, failing if another request wrote first."""
    result = session.execute(
        sa_update(models.Game)
        .where(col(models.Game.id) == gs.id)
        .where(col(models.Game.version) == gs.version)
        .values(
            guessed_letters_json=gs.to_record().guessed_letters_json,
            game_status=gs.game_status,
            wrong_guesses=gs.wrong_guesses,
            hints_used=gs.hints_used,
            updated_at=gs.updated_at,
            finished_at=gs.finished_at,
            version=gs.version + 1,
        )
    )
    if result.rowcount != 1:
        session.rollback()
        raise ConflictError("Game was updated by another request; reload and retry", game_id=gs.id)
    session.commit()
    gs.version += 1


def update_terminal_status(
    session: Session, game_id: str, status: str, wrong_guesses: int, hints_used: int
) -> models.Game:
    if status not in models.TERMINAL_STATUSES:
        raise ValidationError("Game status must be won or lost")
    if wrong_guesses < 0 or hints_used < 0:
        raise ValidationError("Counters must be non-negative")
    g = session.get(models.Game, game_id)
    if g is None:
        raise NotFoundError("game not found")
    if g.game_status != models.IN_PROGRESS:
        raise InvalidStateError(f"game is already {g.game_status}", extra={"game_id": game_id})
    now = _now()
    g.game_status = status
    g.wrong_guesses = wrong_guesses
    g.hints_used = hints_used
    g.updated_at = now
    g.finished_at = now
    g.version += 1
    session.add(g)
    session.commit()
    session.refresh(g)
    return g


# -- derived views --------------------------------------------------------


def get_leaderboard(
    session: Session, limit: Optional[int] = LEADERBOARD_SIZE, min_games: int = MIN_COMPLETED_GAMES
) -> List[dict]:
    games = list_completed_games(session)
    entries = rank_players(games, min_games=min_games, limit=limit)
    names = get_user_names(session, [e.user_id for e in entries])
    for e in entries:
        e.name = names.get(e.user_id)
    return [e.as_dict() for e in entries]


def get_user_stats(
    session: Session, user_id: int, now: Optional[datetime] = None, min_games: int = MIN_COMPLETED_GAMES
) -> dict:
    """Stats for one user plus their place in the full leaderboard (None until eligible)."""
    stats = compute_user_stats(list_games_for_user(session, user_id), now=now).as_dict()
    stats['placement'] = placement_for(user_id, list_completed_games(session), min_games=min_games)
    return stats
