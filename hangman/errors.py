"""
Error taxonomy for the hangman service.

Every error the game core raises derives from HangmanError and carries the
HTTP status the API layer maps it to, so routes never translate exceptions
by hand.
"""

from typing import Any, Dict, Optional


class HangmanError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", extra: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "error": self.code}
        payload.update(self.extra)
        return payload


class ValidationError(HangmanError):
    """Malformed input: bad letter, out-of-range word, missing field."""
    status_code = 400
    code = "validation_error"


class Unauthenticated(HangmanError):
    status_code = 401
    code = "unauthenticated"


class NotFoundError(HangmanError):
    status_code = 404
    code = "not_found"


class InvalidStateError(HangmanError):
    """Operation against a finished or missing game session."""
    status_code = 409
    code = "invalid_state"


class HintExhaustedError(InvalidStateError):
    code = "hints_exhausted"


class ConflictError(HangmanError):
    """A second in-progress game, a duplicate account, or a lost write race."""
    status_code = 409
    code = "conflict"

    def __init__(self, message: str = "", game_id: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        extra = dict(extra or {})
        if game_id is not None:
            extra["game_id"] = game_id
        super().__init__(message, extra)
        self.game_id = game_id


class DependencyError(HangmanError):
    """Word supplier or store unavailable or empty."""
    status_code = 503
    code = "dependency_error"
