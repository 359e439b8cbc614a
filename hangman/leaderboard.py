"""
Cross-user leaderboard.

Only finished games count. Players need MIN_COMPLETED_GAMES finished games
to be ranked. Order: overall score desc, then total games desc, then win
rate desc; remaining ties keep the order in which players were first seen.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from . import models, scoring

MIN_COMPLETED_GAMES = 3
LEADERBOARD_SIZE = 5


@dataclass
class PlayerTotals:
    user_id: int
    total_games: int = 0
    games_won: int = 0
    games_lost: int = 0
    total_wrong_guesses: int = 0
    total_hints_used: int = 0
    # min over won games of wrong + 0.5 * hints
    best_performance: Optional[float] = None

    @property
    def average_wrong_guesses(self) -> float:
        return self.total_wrong_guesses / self.total_games if self.total_games else 0.0

    @property
    def average_hints_used(self) -> float:
        return self.total_hints_used / self.total_games if self.total_games else 0.0

    @property
    def win_rate(self) -> float:
        return scoring.win_rate_component(self.games_won, self.total_games)

    @property
    def efficiency_penalty(self) -> float:
        return scoring.efficiency_penalty(self.average_wrong_guesses, self.average_hints_used)

    @property
    def efficiency_score(self) -> float:
        return scoring.efficiency_score(self.average_wrong_guesses, self.average_hints_used)

    @property
    def volume_score(self) -> float:
        return scoring.volume_component(self.total_games)

    @property
    def overall_score(self) -> float:
        return scoring.overall_score(
            self.total_games, self.games_won, self.average_wrong_guesses, self.average_hints_used
        )


@dataclass
class LeaderboardEntry:
    rank: int
    name: Optional[str]
    totals: PlayerTotals

    @property
    def user_id(self) -> int:
        return self.totals.user_id

    @property
    def overall_score(self) -> float:
        return self.totals.overall_score

    def as_dict(self) -> dict:
        t = self.totals
        best = t.best_performance
        return {
            'rank': self.rank,
            'user': {'id': t.user_id, 'name': self.name},
            'stats': {
                'total_games': t.total_games,
                'games_won': t.games_won,
                'games_lost': t.games_lost,
                'win_rate': round(t.win_rate, 2),
                'total_wrong_guesses': t.total_wrong_guesses,
                'total_hints_used': t.total_hints_used,
                'average_wrong_guesses': round(t.average_wrong_guesses, 2),
                'average_hints_used': round(t.average_hints_used, 2),
                'best_performance': round(best, 2) if best is not None else None,
                'efficiency_penalty': round(t.efficiency_penalty, 2),
                'efficiency_score': round(t.efficiency_score, 2),
                'overall_score': round(t.overall_score, 2),
            },
        }


def aggregate_players(games: Iterable) -> Dict[int, PlayerTotals]:
    """Group finished games by user. Dict order is first-seen order."""
    players: Dict[int, PlayerTotals] = {}
    for g in games:
        if g.game_status not in models.TERMINAL_STATUSES:
            continue
        totals = players.get(g.user_id)
        if totals is None:
            totals = players[g.user_id] = PlayerTotals(user_id=g.user_id)
        totals.total_games += 1
        totals.total_wrong_guesses += g.wrong_guesses
        totals.total_hints_used += g.hints_used
        if g.game_status == models.WON:
            totals.games_won += 1
            perf = scoring.efficiency_penalty(g.wrong_guesses, g.hints_used)
            if totals.best_performance is None or perf < totals.best_performance:
                totals.best_performance = perf
        else:
            totals.games_lost += 1
    return players


def _ordered_eligible(games: Iterable, min_games: int) -> List[PlayerTotals]:
    eligible = [t for t in aggregate_players(games).values() if t.total_games >= min_games]
    # sorted() is stable, so residual ties keep first-seen order
    return sorted(eligible, key=lambda t: (-t.overall_score, -t.total_games, -t.win_rate))


def rank_players(
    games: Iterable,
    names: Optional[Mapping[int, str]] = None,
    min_games: int = MIN_COMPLETED_GAMES,
    limit: Optional[int] = LEADERBOARD_SIZE,
) -> List[LeaderboardEntry]:
    """Return ranked entries; limit=None returns every eligible player."""
    names = names or {}
    ordered = _ordered_eligible(games, min_games)
    if isinstance(limit, int) and limit > 0:
        ordered = ordered[:limit]
    return [
        LeaderboardEntry(rank=i, name=names.get(t.user_id), totals=t)
        for i, t in enumerate(ordered, start=1)
    ]


def placement_for(user_id: int, games: Iterable, min_games: int = MIN_COMPLETED_GAMES) -> Optional[int]:
    """1-based position of a user in the full ranking, None when not eligible."""
    for idx, totals in enumerate(_ordered_eligible(games, min_games), start=1):
        if totals.user_id == user_id:
            return idx
    return None
