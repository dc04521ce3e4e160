"""Database connection and schema management."""

import asyncio
import logging
from typing import Optional

import aiosqlite

from cabbagesync.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()


SCHEMA = """
-- Users (owned by the accounts service; only the columns we read)
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Meetings (owned by the meetings service)
CREATE TABLE IF NOT EXISTS meetings (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    about TEXT NOT NULL DEFAULT '',
    timezone TEXT NOT NULL,
    min_start_hour REAL NOT NULL,
    max_end_hour REAL NOT NULL,
    tentative_dates TEXT NOT NULL,
    scheduled_start_datetime TEXT,
    scheduled_end_datetime TEXT,
    creator_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS meeting_respondents (
    respondent_id INTEGER PRIMARY KEY,
    meeting_id INTEGER NOT NULL REFERENCES meetings(id) ON DELETE CASCADE,
    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
    guest_name TEXT,
    availabilities TEXT NOT NULL DEFAULT '[]',
    UNIQUE(meeting_id, user_id)
);

-- OAuth2 credentials (tokens encrypted at rest), one per user per provider
CREATE TABLE IF NOT EXISTS oauth2_credentials (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    provider_type INTEGER NOT NULL,
    sub TEXT NOT NULL,
    access_token_encrypted BLOB NOT NULL,
    access_token_expires_at INTEGER NOT NULL,
    refresh_token_encrypted BLOB NOT NULL,
    linked_calendar BOOLEAN NOT NULL DEFAULT TRUE,
    updated_at TIMESTAMP,
    PRIMARY KEY (user_id, provider_type),
    UNIQUE(provider_type, sub)
);

-- Last synchronized window, continuation cursor and cached events
CREATE TABLE IF NOT EXISTS calendar_sync_cursors (
    meeting_id INTEGER NOT NULL REFERENCES meetings(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL,
    provider_type INTEGER NOT NULL,
    events TEXT NOT NULL,
    prev_range_start TEXT NOT NULL,
    prev_range_end TEXT NOT NULL,
    sync_cursor TEXT NOT NULL,
    updated_at TIMESTAMP,
    PRIMARY KEY (meeting_id, user_id, provider_type),
    FOREIGN KEY (user_id, provider_type)
        REFERENCES oauth2_credentials(user_id, provider_type) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sync_cursors_user
    ON calendar_sync_cursors(user_id, provider_type);

-- Events we created in a respondent's calendar for a scheduled meeting
CREATE TABLE IF NOT EXISTS calendar_created_events (
    respondent_id INTEGER NOT NULL
        REFERENCES meeting_respondents(respondent_id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL,
    provider_type INTEGER NOT NULL,
    created_event_id TEXT NOT NULL,
    PRIMARY KEY (respondent_id, provider_type),
    FOREIGN KEY (user_id, provider_type)
        REFERENCES oauth2_credentials(user_id, provider_type) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_created_events_user
    ON calendar_created_events(user_id, provider_type);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA foreign_keys = ON")
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")
