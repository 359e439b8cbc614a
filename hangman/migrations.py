"""
Database migration ledger for the hangman service.
Each named migration runs once per database and is recorded in the migration table.
"""

from sqlmodel import SQLModel, Field, text, Session, select
from sqlalchemy.engine import Engine
from typing import List, Optional, Tuple
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


class Migration(SQLModel, table=True):
    """Track applied migrations"""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    applied_at: datetime


MIGRATIONS: List[Tuple[str, str]] = [
    (
        "001_game_query_indexes",
        """
        -- history and stats: a user's games newest first
        CREATE INDEX IF NOT EXISTS idx_game_user_created ON game(user_id, created_at);
        -- leaderboard: finished games
        CREATE INDEX IF NOT EXISTS idx_game_status ON game(game_status);
        CREATE INDEX IF NOT EXISTS idx_user_refresh_token ON "user"(refresh_token)
        """,
    ),
    (
        "002_one_active_game_per_user",
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_game_user_in_progress ON game(user_id) WHERE game_status = 'in_progress'
        """,
    ),
]


def ensure_migration_table(engine: Engine):
    Migration.metadata.create_all(engine, tables=[Migration.__table__])


def has_migration_been_applied(engine: Engine, migration_name: str) -> bool:
    ensure_migration_table(engine)
    with Session(engine) as session:
        result = session.exec(select(Migration).where(Migration.name == migration_name)).first()
        return result is not None


def apply_migration(engine: Engine, migration_name: str, migration_sql: str) -> bool:
    """Apply a migration and record it. Returns False if it was already applied."""
    if has_migration_been_applied(engine, migration_name):
        logger.info(f"Migration {migration_name} already applied, skipping")
        return False

    logger.info(f"Applying migration: {migration_name}")
    with Session(engine) as session:
        try:
            for statement in migration_sql.strip().split(';'):
                # drop comment lines so a chunk that is only comments is skipped
                lines = [l for l in statement.splitlines() if not l.strip().startswith('--')]
                statement = "\n".join(lines).strip()
                if statement:
                    session.execute(text(statement))
            session.add(Migration(name=migration_name, applied_at=datetime.now(timezone.utc)))
            session.commit()
            logger.info(f"Migration {migration_name} applied successfully")
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to apply migration {migration_name}: {e}")
            raise
    return True


def run_migrations(engine: Engine) -> List[str]:
    """Run all pending migrations against the given engine; returns the names applied."""
    applied = [name for name, sql in MIGRATIONS if apply_migration(engine, name, sql)]
    logger.info("All migrations completed")
    return applied
