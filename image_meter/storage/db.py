"""
Database connection management.

Provides SQLite connection and schema for data persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "image_meter.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=30)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the cache, account and charge tables if they don't exist.

    ``cache_entry`` and ``charge`` are append-only: rows are never updated
    or deleted by this package. ``account.balance_cents`` is the only
    mutable column and is only changed by conditional updates.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS cache_entry (
                key TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                content_type TEXT NOT NULL,
                cache_control TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS account (
                access_token TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                balance_cents INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS charge (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                access_token TEXT NOT NULL REFERENCES account(access_token),
                amount_cents INTEGER NOT NULL,
                idempotency_key TEXT UNIQUE
            );
        """)
        conn.commit()
    finally:
        conn.close()
