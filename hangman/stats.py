"""
Per-user statistics computed from a user's stored games.

Everything is derived by a single pass over the history; source records are
never modified. Values are kept at full precision and rounded to two
decimals only in UserStats.as_dict().
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from . import models

RECENT_GAMES_LIMIT = 10
RECENT_WINDOW_DAYS = 30


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _round2(value: float) -> float:
    return round(value, 2)


@dataclass
class WordLengthStats:
    word_length: int
    total_games: int = 0
    games_won: int = 0
    games_lost: int = 0

    @property
    def win_rate(self) -> float:
        if self.total_games == 0:
            return 0.0
        return 100.0 * self.games_won / self.total_games

    def as_dict(self) -> dict:
        return {
            'word_length': self.word_length,
            'total_games': self.total_games,
            'games_won': self.games_won,
            'games_lost': self.games_lost,
            'win_rate': _round2(self.win_rate),
        }


@dataclass
class UserStats:
    total_games: int = 0
    games_won: int = 0
    games_lost: int = 0
    games_in_progress: int = 0
    total_wrong_guesses: int = 0
    total_hints_used: int = 0
    perfect_games: int = 0
    best_game: Optional[int] = None
    worst_game: Optional[int] = None
    games_by_word_length: List[WordLengthStats] = field(default_factory=list)
    last_30_days: Dict[str, int] = field(default_factory=dict)
    recent_games: List[dict] = field(default_factory=list)

    @property
    def win_rate(self) -> float:
        completed = self.games_won + self.games_lost
        if completed == 0:
            return 0.0
        return 100.0 * self.games_won / completed

    @property
    def average_wrong_guesses(self) -> float:
        if self.total_games == 0:
            return 0.0
        return self.total_wrong_guesses / self.total_games

    @property
    def average_hints_used(self) -> float:
        if self.total_games == 0:
            return 0.0
        return self.total_hints_used / self.total_games

    def as_dict(self) -> dict:
        return {
            'total_games': self.total_games,
            'games_won': self.games_won,
            'games_lost': self.games_lost,
            'games_in_progress': self.games_in_progress,
            'win_rate': _round2(self.win_rate),
            'total_wrong_guesses': self.total_wrong_guesses,
            'total_hints_used': self.total_hints_used,
            'average_wrong_guesses': _round2(self.average_wrong_guesses),
            'average_hints_used': _round2(self.average_hints_used),
            'best_game': self.best_game,
            'worst_game': self.worst_game,
            'perfect_games': self.perfect_games,
            'games_by_word_length': [b.as_dict() for b in self.games_by_word_length],
            'last_30_days': dict(self.last_30_days),
            'recent_games': list(self.recent_games),
        }


def _recent_game_row(game) -> dict:
    created_at = _as_utc(game.created_at)
    return {
        'game_id': game.id,
        # in-progress words stay secret
        'word': game.word if game.game_status in models.TERMINAL_STATUSES else None,
        'word_length': game.word_length,
        'game_status': game.game_status,
        'wrong_guesses': game.wrong_guesses,
        'hints_used': game.hints_used,
        'created_at': created_at.isoformat() if created_at else None,
    }


def compute_user_stats(
    games: Iterable,
    now: Optional[datetime] = None,
    recent_limit: int = RECENT_GAMES_LIMIT,
    window_days: int = RECENT_WINDOW_DAYS,
) -> UserStats:
    """Reduce a user's game history to UserStats.

    `games` may be Game records or anything exposing the same attributes.
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    window_start = now - timedelta(days=window_days)
    games = list(games)

    stats = UserStats()
    by_length: Dict[int, WordLengthStats] = {}
    window_counts: Counter = Counter()

    for g in games:
        stats.total_games += 1
        stats.total_wrong_guesses += g.wrong_guesses
        stats.total_hints_used += g.hints_used

        bucket = by_length.get(g.word_length)
        if bucket is None:
            bucket = by_length[g.word_length] = WordLengthStats(word_length=g.word_length)
        bucket.total_games += 1

        if g.game_status == models.WON:
            stats.games_won += 1
            bucket.games_won += 1
            if g.wrong_guesses == 0:
                stats.perfect_games += 1
            if stats.best_game is None or g.wrong_guesses < stats.best_game:
                stats.best_game = g.wrong_guesses
        elif g.game_status == models.LOST:
            stats.games_lost += 1
            bucket.games_lost += 1
            if stats.worst_game is None or g.wrong_guesses > stats.worst_game:
                stats.worst_game = g.wrong_guesses
        else:
            stats.games_in_progress += 1

        created_at = _as_utc(g.created_at)
        if created_at is not None and created_at >= window_start:
            window_counts[g.game_status] += 1

    stats.games_by_word_length = [by_length[k] for k in sorted(by_length)]
    stats.last_30_days = dict(window_counts)

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    newest_first = sorted(games, key=lambda g: _as_utc(g.created_at) or epoch, reverse=True)
    stats.recent_games = [_recent_game_row(g) for g in newest_first[:recent_limit]]
    return stats
