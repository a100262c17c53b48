"""Database schema and migration logic for yearsync SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Database initialization (init_db)
- Schema migration (migrate_schema)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 2  # v2: episodes.archived

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Podcasts (parents). Stubs are stored unsubscribed.
CREATE TABLE IF NOT EXISTS podcasts (
    uuid TEXT PRIMARY KEY,
    title TEXT NOT NULL DEFAULT '',
    author TEXT NOT NULL DEFAULT '',
    feed_url TEXT NOT NULL DEFAULT '',
    subscribed INTEGER NOT NULL DEFAULT 0,
    added_at TEXT NOT NULL
);

-- Episodes (children) with the user's sync info
CREATE TABLE IF NOT EXISTS episodes (
    uuid TEXT PRIMARY KEY,
    podcast_uuid TEXT NOT NULL,
    title TEXT,
    published_date TEXT,
    duration REAL,
    playing_status INTEGER,
    played_up_to REAL,
    starred INTEGER NOT NULL DEFAULT 0,
    archived INTEGER NOT NULL DEFAULT 0,
    last_playback_interaction_date TEXT
);
CREATE INDEX IF NOT EXISTS idx_episodes_podcast ON episodes(podcast_uuid);
CREATE INDEX IF NOT EXISTS idx_episodes_interaction ON episodes(last_playback_interaction_date);
"""


def _columns(conn: sqlite3.Connection, table: str) -> set:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Bring an existing database up to SCHEMA_VERSION.

    Fresh databases have no tables yet and are left to SCHEMA.
    """
    tables = {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    }
    if "episodes" not in tables:
        return

    existing = _columns(conn, "episodes")
    if "archived" not in existing:
        logger.info("Migrating: adding episodes.archived")
        conn.execute("ALTER TABLE episodes ADD COLUMN archived INTEGER NOT NULL DEFAULT 0")


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
    """
    # Run migrations first so the index DDL sees upgraded tables
    migrate_schema(conn)

    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] < SCHEMA_VERSION:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
        logger.info(f"Schema upgraded from v{row[0]} to v{SCHEMA_VERSION}")
