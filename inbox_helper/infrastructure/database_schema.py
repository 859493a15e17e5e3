"""
Database schema for Inbox Helper.

Every table is keyed by user_id; a single file serves all users.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from inbox_helper.observability.logging import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES: dict[str, list[str]] = {
    "oauth_tokens": ["user_id", "access_token", "refresh_token", "expires_at"],
    "bucket_definitions": ["id", "user_id", "name", "type", "description"],
    "thread_snapshots": ["user_id", "thread_id", "subject", "snippet", "received_at"],
    "thread_classifications": ["user_id", "thread_id", "bucket_id", "confidence"],
    "email_classification_cache": ["user_id", "email_id", "bucket_id", "confidence"],
    "rate_limits": ["key", "window_start", "count"],
}


def init_database(db_path: Path) -> None:
    """
    Create tables and indexes if they don't exist (idempotent).

    Side Effects:
        - Creates the parent directory of db_path if needed
        - Creates the database file if needed
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS oauth_tokens (
                user_id TEXT PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                expires_at INTEGER,
                scope TEXT,
                token_type TEXT,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS bucket_definitions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('default', 'custom')),
                description TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS thread_snapshots (
                user_id TEXT NOT NULL,
                thread_id TEXT NOT NULL,
                subject TEXT NOT NULL,
                snippet TEXT NOT NULL,
                sender TEXT,
                received_at INTEGER,
                PRIMARY KEY (user_id, thread_id)
            );

            CREATE TABLE IF NOT EXISTS thread_classifications (
                user_id TEXT NOT NULL,
                thread_id TEXT NOT NULL,
                bucket_id TEXT NOT NULL,
                confidence REAL NOT NULL,
                reason TEXT,
                PRIMARY KEY (user_id, thread_id)
            );

            CREATE TABLE IF NOT EXISTS email_classification_cache (
                user_id TEXT NOT NULL,
                email_id TEXT NOT NULL,
                bucket_id TEXT NOT NULL,
                confidence REAL NOT NULL,
                reason TEXT,
                updated_at INTEGER NOT NULL,
                UNIQUE (user_id, email_id)
            );

            CREATE TABLE IF NOT EXISTS rate_limits (
                key TEXT PRIMARY KEY,
                window_start INTEGER NOT NULL,
                count INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_bucket_definitions_user
                ON bucket_definitions(user_id);
            CREATE INDEX IF NOT EXISTS idx_thread_snapshots_user_received
                ON thread_snapshots(user_id, received_at DESC);
            CREATE INDEX IF NOT EXISTS idx_cache_user_bucket
                ON email_classification_cache(user_id, bucket_id);
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database schema ready at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Check that every required table and column exists.

    Raises:
        ValueError: If tables or columns are missing
    """
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(REQUIRED_TABLES) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {sorted(missing_tables)}")

    for table, columns in REQUIRED_TABLES.items():
        cursor.execute(f"PRAGMA table_info({table})")
        existing_columns = {row[1] for row in cursor.fetchall()}
        missing_columns = set(columns) - existing_columns
        if missing_columns:
            raise ValueError(f"Table {table} missing columns: {sorted(missing_columns)}")

    return True
