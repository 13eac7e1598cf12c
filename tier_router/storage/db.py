"""
Database connection management.

Provides SQLite connection and schema for the usage ledger and
session memory stores.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "tier_router.db"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS usage_record (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        period TEXT NOT NULL,
        provider TEXT NOT NULL,
        model TEXT NOT NULL,
        tier TEXT NOT NULL,
        input_tokens INTEGER NOT NULL,
        output_tokens INTEGER NOT NULL,
        cost_usd REAL NOT NULL,
        task_summary TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS period_total (
        period TEXT NOT NULL,
        dimension TEXT NOT NULL,
        key TEXT NOT NULL,
        cost_usd REAL NOT NULL DEFAULT 0,
        tokens INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (period, dimension, key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_session (
        session_id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        last_updated TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_entry (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL REFERENCES memory_session(session_id) ON DELETE CASCADE,
        timestamp TEXT NOT NULL,
        task_pattern TEXT NOT NULL,
        tier_used TEXT NOT NULL,
        success INTEGER NOT NULL,
        context TEXT
    )
    """,
)


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    The parent directory is created if it does not exist yet.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create ledger and memory tables if they don't exist."""
    conn = get_connection(db_path)
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()
