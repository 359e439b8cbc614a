import json
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from . import models, scoring
from .errors import ConflictError, HintExhaustedError, InvalidStateError, ValidationError


MIN_WORD_LENGTH = 3
MAX_WORD_LENGTH = 20
BLANK = "_"

_LETTER_RE = re.compile(r'[A-Za-z]')
_WORD_RE = re.compile(r'[A-Za-z]+')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_letter(letter) -> str:
    if not isinstance(letter, str) or not _LETTER_RE.fullmatch(letter):
        raise ValidationError("guess must be a single letter A-Z")
    return letter.upper()


def normalize_word(word) -> str:
    if not isinstance(word, str):
        raise ValidationError("word is required")
    word = word.strip()
    if not MIN_WORD_LENGTH <= len(word) <= MAX_WORD_LENGTH:
        raise ValidationError(f"word length must be between {MIN_WORD_LENGTH} and {MAX_WORD_LENGTH}")
    if not _WORD_RE.fullmatch(word):
        raise ValidationError("word may only contain letters A-Z")
    return word.upper()


def ensure_no_active_game(active_game_id: Optional[str]) -> None:
    if active_game_id is not None:
        raise ConflictError(
            "You already have an active game. Please finish it before starting a new one.",
            game_id=active_game_id,
        )


@dataclass
class GuessResult:
    letter: str
    correct: bool
    already_guessed: bool
    game_status: str
    message: str

    @property
    def changed(self) -> bool:
        return not self.already_guessed

    def as_dict(self) -> dict:
        return {
            'letter': self.letter,
            'correct': self.correct,
            'already_guessed': self.already_guessed,
            'game_status': self.game_status,
            'message': self.message,
        }


class GameSession:
    """State machine for a single hangman game.

    in_progress -> won | lost; terminal states are final. Every failing call
    raises before touching state, so a session stays usable after an error.
    """

    def __init__(
        self,
        user_id: int,
        word: str,
        hints: Iterable[str] = (),
        max_wrong_guesses: int = 6,
        max_hints: int = 2,
        game_id: Optional[str] = None,
        guessed_letters: Iterable[str] = (),
        game_status: str = models.IN_PROGRESS,
        wrong_guesses: int = 0,
        hints_used: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        version: int = 0,
    ):
        if game_status not in models.GAME_STATUSES:
            raise ValidationError(f"unknown game status {game_status!r}")
        if max_wrong_guesses < 1:
            raise ValidationError("max_wrong_guesses must be at least 1")
        if max_hints < 0:
            raise ValidationError("max_hints cannot be negative")
        self.id = game_id or str(uuid.uuid4())
        self.user_id = user_id
        self.word = normalize_word(word)
        self.hints: List[str] = [h for h in hints]
        self.max_wrong_guesses = max_wrong_guesses
        self.max_hints = max_hints
        self.guessed_letters: List[str] = []
        for letter in guessed_letters:
            letter = normalize_letter(letter)
            if letter not in self.guessed_letters:
                self.guessed_letters.append(letter)
        self.game_status = game_status
        self.wrong_guesses = wrong_guesses
        self.hints_used = hints_used
        now = utcnow()
        self.created_at = created_at or now
        self.updated_at = updated_at or self.created_at
        self.finished_at = finished_at
        self.expires_at = expires_at
        self.version = version
        self.final_score: Optional[float] = scoring.score(self) if self.is_terminal else None

    @classmethod
    def start(
        cls,
        user_id: int,
        word: str,
        hints: Iterable[str] = (),
        max_wrong_guesses: int = 6,
        max_hints: int = 2,
        active_game_id: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
    ) -> "GameSession":
        ensure_no_active_game(active_game_id)
        hints = list(hints)
        for h in hints:
            if not isinstance(h, str) or not h.strip():
                raise ValidationError("hints must be non-empty strings")
        now = utcnow()
        expires_at = now + timedelta(minutes=ttl_minutes) if ttl_minutes else None
        return cls(
            user_id=user_id,
            word=word,
            hints=hints,
            max_wrong_guesses=max_wrong_guesses,
            max_hints=min(max_hints, len(hints)),
            created_at=now,
            expires_at=expires_at,
        )

    # -- derived state -----------------------------------------------------

    @property
    def word_length(self) -> int:
        return len(self.word)

    @property
    def is_terminal(self) -> bool:
        return self.game_status in models.TERMINAL_STATUSES

    @property
    def correct_letters(self) -> List[str]:
        return [l for l in self.guessed_letters if l in self.word]

    @property
    def incorrect_letters(self) -> List[str]:
        return [l for l in self.guessed_letters if l not in self.word]

    @property
    def remaining_guesses(self) -> int:
        return max(0, self.max_wrong_guesses - self.wrong_guesses)

    @property
    def remaining_hints(self) -> int:
        return max(0, self.max_hints - self.hints_used)

    @property
    def revealed_hints(self) -> List[str]:
        return self.hints[:self.hints_used]

    @property
    def perfect_game(self) -> bool:
        return self.game_status == models.WON and self.wrong_guesses == 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None or self.is_terminal:
            return False
        now = now or utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at

    def current_display(self) -> List[str]:
        reveal_all = self.is_terminal
        return [c if reveal_all or c in self.guessed_letters else BLANK for c in self.word]

    # -- transitions -------------------------------------------------------

    def _require_in_progress(self):
        if self.is_terminal:
            raise InvalidStateError(f"game is already {self.game_status}", extra={"game_id": self.id})

    def _touch(self):
        self.updated_at = utcnow()

    def _finish(self, status: str):
        self.game_status = status
        self.finished_at = self.updated_at
        self.final_score = scoring.score(self)

    def guess_letter(self, letter) -> GuessResult:
        letter = normalize_letter(letter)
        self._require_in_progress()

        if letter in self.guessed_letters:
            return GuessResult(letter, letter in self.word, True, self.game_status, "Letter already guessed")

        self.guessed_letters.append(letter)
        correct = letter in self.word
        if not correct:
            self.wrong_guesses += 1
        self._touch()

        # win before loss: a completing guess is always correct
        if set(self.word) <= set(self.guessed_letters):
            self._finish(models.WON)
            message = "Congratulations! You won!"
        elif self.wrong_guesses >= self.max_wrong_guesses:
            self._finish(models.LOST)
            message = "Game over! You ran out of guesses."
        else:
            message = "Correct letter!" if correct else "Wrong letter!"
        return GuessResult(letter, correct, False, self.game_status, message)

    def use_hint(self) -> str:
        self._require_in_progress()
        if self.hints_used >= self.max_hints:
            raise HintExhaustedError("No hints remaining", extra={"game_id": self.id})
        hint = self.hints[self.hints_used]
        self.hints_used += 1
        self._touch()
        return hint

    def surrender(self):
        self._require_in_progress()
        self._touch()
        self._finish(models.LOST)

    # -- persistence mapping -----------------------------------------------

    def to_record(self) -> models.Game:
        return models.Game(
            id=self.id,
            user_id=self.user_id,
            word=self.word,
            word_length=self.word_length,
            guessed_letters_json=json.dumps(self.guessed_letters),
            game_status=self.game_status,
            wrong_guesses=self.wrong_guesses,
            hints_used=self.hints_used,
            max_wrong_guesses=self.max_wrong_guesses,
            max_hints=self.max_hints,
            hints_json=json.dumps(self.hints),
            created_at=self.created_at,
            updated_at=self.updated_at,
            finished_at=self.finished_at,
            expires_at=self.expires_at,
            version=self.version,
        )

    @classmethod
    def from_record(cls, game: models.Game) -> "GameSession":
        try:
            guessed = json.loads(game.guessed_letters_json or "[]")
            hints = json.loads(game.hints_json or "[]")
        except ValueError:
            raise ValidationError(f"game {game.id} has a corrupt record")
        gs = cls(
            user_id=game.user_id,
            word=game.word,
            hints=hints,
            max_wrong_guesses=game.max_wrong_guesses,
            max_hints=game.max_hints,
            game_id=game.id,
            guessed_letters=guessed,
            game_status=game.game_status,
            wrong_guesses=game.wrong_guesses,
            hints_used=game.hints_used,
            created_at=game.created_at,
            updated_at=game.updated_at,
            finished_at=game.finished_at,
            expires_at=game.expires_at,
            version=game.version,
        )
        # wrong_guesses is always derivable from the guessed letters
        if gs.wrong_guesses != len(gs.incorrect_letters):
            raise ValidationError(f"game {game.id} has a corrupt record")
        return gs

    def as_view(self) -> dict:
        """State for the presentation layer; the word stays hidden until the game ends."""
        display = self.current_display()
        view = {
            'game_id': self.id,
            'game_status': self.game_status,
            'word_length': self.word_length,
            'display': display,
            'display_text': ' '.join(display),
            'guessed_letters': list(self.guessed_letters),
            'correct_letters': self.correct_letters,
            'incorrect_letters': self.incorrect_letters,
            'wrong_guesses': self.wrong_guesses,
            'max_wrong_guesses': self.max_wrong_guesses,
            'remaining_guesses': self.remaining_guesses,
            'hints_used': self.hints_used,
            'max_hints': self.max_hints,
            'hints': self.revealed_hints,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.is_terminal:
            view['word'] = self.word
            view['score'] = self.final_score
            view['perfect_game'] = self.perfect_game
        return view
