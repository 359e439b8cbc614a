from typing import Optional
from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field
from datetime import datetime


IN_PROGRESS = "in_progress"
WON = "won"
LOST = "lost"
GAME_STATUSES = (IN_PROGRESS, WON, LOST)
TERMINAL_STATUSES = (WON, LOST)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)  # stored lowercase
    password_hash: str
    refresh_token: Optional[str] = None
    created_at: Optional[datetime] = None


class Game(SQLModel, table=True):
    # at most one in_progress game per user
    __table_args__ = (
        Index(
            "uq_game_user_in_progress",
            "user_id",
            unique=True,
            sqlite_where=text("game_status = 'in_progress'"),
            postgresql_where=text("game_status = 'in_progress'"),
        ),
    )

    id: Optional[str] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    word: str  # uppercase
    word_length: int
    guessed_letters_json: str = "[]"
    game_status: str = IN_PROGRESS
    wrong_guesses: int = 0
    hints_used: int = 0
    max_wrong_guesses: int = 6
    max_hints: int = 2
    hints_json: str = "[]"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    version: int = 0


class Word(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    word: str = Field(index=True, unique=True)
    hint1: str
    hint2: str
