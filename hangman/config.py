"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default) in ("1", "true", "True")


@dataclass
class Settings:
    database_url: str = "sqlite:///./hangman.db"
    # secret for signing access/refresh tokens; override with SESSION_SECRET in production
    secret_key: str = "dev-secret-change-me"
    access_token_ttl_minutes: int = 15
    refresh_token_ttl_days: int = 7
    cookie_secure: bool = False

    max_wrong_guesses: int = 6
    max_hints: int = 2
    # 0 disables expiry of abandoned games
    game_ttl_minutes: int = 24 * 60

    leaderboard_min_games: int = 3
    leaderboard_size: int = 5
    leaderboard_cache_minutes: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            secret_key=os.getenv("SESSION_SECRET", cls.secret_key),
            access_token_ttl_minutes=_env_int("ACCESS_TOKEN_TTL_MINUTES", cls.access_token_ttl_minutes),
            refresh_token_ttl_days=_env_int("REFRESH_TOKEN_TTL_DAYS", cls.refresh_token_ttl_days),
            cookie_secure=_env_flag("COOKIE_SECURE"),
            max_wrong_guesses=_env_int("MAX_WRONG_GUESSES", cls.max_wrong_guesses),
            max_hints=_env_int("MAX_HINTS", cls.max_hints),
            game_ttl_minutes=_env_int("GAME_TTL_MINUTES", cls.game_ttl_minutes),
            leaderboard_min_games=_env_int("LEADERBOARD_MIN_GAMES", cls.leaderboard_min_games),
            leaderboard_size=_env_int("LEADERBOARD_SIZE", cls.leaderboard_size),
            leaderboard_cache_minutes=_env_int("LEADERBOARD_CACHE_MINUTES", cls.leaderboard_cache_minutes),
        )
