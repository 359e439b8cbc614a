import json
import os
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from . import models
from .errors import ValidationError
from .game import normalize_word
from .logging_utils import get_logger
from .migrations import run_migrations

logger = get_logger("hangman.init_db")

WORDS_FILE = Path(__file__).resolve().parent / "data" / "words.json"
DEFAULT_DATABASE_URL = "sqlite:///./hangman.db"


def create_db_engine(url: str = DEFAULT_DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    # pooled connections for server databases
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
    )


def load_word_list(path: Path = WORDS_FILE) -> list:
    """Load [{word, hint1, hint2}, ...] from a JSON file, validating each entry."""
    with open(path, 'r', encoding='utf-8') as f:
        entries = json.load(f)
    if not isinstance(entries, list) or not entries:
        raise ValueError(f"{path} must contain a non-empty array of words")
    words = []
    for entry in entries:
        try:
            word = normalize_word(entry.get('word'))
        except ValidationError as e:
            raise ValueError(f"invalid word entry {entry!r}: {e}")
        if not entry.get('hint1') or not entry.get('hint2'):
            raise ValueError(f"word {word} needs two hints")
        words.append({'word': word, 'hint1': entry['hint1'], 'hint2': entry['hint2']})
    return words


def seed_words(engine: Engine, entries: Optional[Iterable[dict]] = None) -> int:
    """Insert corpus words that are not stored yet; returns the number added."""
    entries = load_word_list() if entries is None else list(entries)
    added = 0
    with Session(engine) as session:
        existing = set(session.exec(select(models.Word.word)).all())
        for entry in entries:
            if entry['word'] in existing:
                continue
            session.add(models.Word(word=entry['word'], hint1=entry['hint1'], hint2=entry['hint2']))
            existing.add(entry['word'])
            added += 1
        session.commit()
    logger.info("words_seeded", extra={"event": "words_seeded"})
    return added


def init_db(engine: Engine, seed: bool = True) -> Engine:
    SQLModel.metadata.create_all(engine)
    try:
        run_migrations(engine)
    except Exception as e:
        logger.warning("migrations_failed", extra={"error": str(e)})
    if seed:
        seed_words(engine)
    logger.info("db_initialized", extra={"url": str(engine.url)})
    return engine


if __name__ == '__main__':
    init_db(create_db_engine(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)))
