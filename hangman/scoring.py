"""
Scoring formulas shared by game finalization, user stats and the leaderboard.

Overall leaderboard score is out of 180:
  win rate    100 * won / total                      (0-100)
  volume      min(total * 2, 50)                     (0-50, saturates at 25 games)
  efficiency  max(0, 30 - (wrong + 0.5 * hints) * 2) (0-30)
"""

from . import models

HINT_WEIGHT = 0.5
EFFICIENCY_MAX = 30.0
EFFICIENCY_SLOPE = 2.0
WIN_RATE_MAX = 100.0
VOLUME_POINTS_PER_GAME = 2
VOLUME_MAX = 50


def efficiency_penalty(wrong_guesses: float, hints_used: float) -> float:
    """Weighted cost of a game (or an average of games); lower is better."""
    return float(wrong_guesses) + HINT_WEIGHT * float(hints_used)


def efficiency_score(wrong_guesses: float, hints_used: float) -> float:
    penalty = efficiency_penalty(wrong_guesses, hints_used)
    return max(0.0, EFFICIENCY_MAX - penalty * EFFICIENCY_SLOPE)


def score(game) -> float:
    """Final score of one game. Only won games score."""
    if game.game_status != models.WON:
        return 0.0
    return efficiency_score(game.wrong_guesses, game.hints_used)


def win_rate_component(games_won: int, total_games: int) -> float:
    if total_games <= 0:
        return 0.0
    return WIN_RATE_MAX * games_won / total_games


def volume_component(total_games: int) -> float:
    return float(min(total_games * VOLUME_POINTS_PER_GAME, VOLUME_MAX))


def overall_score(total_games: int, games_won: int, average_wrong_guesses: float, average_hints_used: float) -> float:
    return (
        win_rate_component(games_won, total_games)
        + volume_component(total_games)
        + efficiency_score(average_wrong_guesses, average_hints_used)
    )
