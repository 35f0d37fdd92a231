import logging
import os
import aiosqlite

from study_helper.config import settings

logger = logging.getLogger(__name__)

_db: aiosqlite.Connection | None = None


async def get_db() -> aiosqlite.Connection:
    """Get or create the database connection."""
    global _db
    if _db is None:
        db_dir = os.path.dirname(settings.DATABASE_PATH)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        _db = await aiosqlite.connect(settings.DATABASE_PATH)
        _db.row_factory = aiosqlite.Row
        await _create_tables(_db)
        logger.info("Database ready at %s", settings.DATABASE_PATH)
    return _db


async def close_db():
    """Close the database connection."""
    global _db
    if _db:
        await _db.close()
        _db = None


async def _create_tables(db: aiosqlite.Connection):
    await db.executescript("""
        CREATE TABLE IF NOT EXISTS users (
            user_id       INTEGER PRIMARY KEY,
            username      TEXT,
            first_name    TEXT,
            created_at    TEXT DEFAULT (datetime('now')),
            last_active   TEXT DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS usage_logs (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id       INTEGER NOT NULL,
            action_type   TEXT NOT NULL,
            created_at    TEXT DEFAULT (datetime('now'))
        );

        CREATE INDEX IF NOT EXISTS idx_usage_logs_user_day
            ON usage_logs (user_id, created_at);

        CREATE TABLE IF NOT EXISTS subscriptions (
            user_id             INTEGER PRIMARY KEY,
            status              TEXT NOT NULL,
            plan_id             TEXT NOT NULL,
            current_period_end  TEXT,
            updated_at          TEXT DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS user_storage (
            user_id       INTEGER NOT NULL,
            key           TEXT NOT NULL,
            value         TEXT NOT NULL,
            updated_at    TEXT DEFAULT (datetime('now')),
            PRIMARY KEY (user_id, key)
        );
    """)
    await db.commit()
