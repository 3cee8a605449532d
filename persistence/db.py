# persistence/db.py
"""
SQLite database connection and schema management.

Holds the billable users and their subscriptions. Timestamps are stored
as fixed-width ISO-8601 UTC strings so they compare correctly in SQL.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_logger = logging.getLogger(__name__)

# Database file location (configurable via env var)
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "billing.db"
DB_PATH = Path(os.environ.get("BILLING_DB_PATH", str(DEFAULT_DB_PATH)))

# One connection per thread
_local = threading.local()
_init_lock = threading.Lock()
_initialized = False


def _get_connection() -> sqlite3.Connection:
    """Get thread-local database connection."""
    conn = getattr(_local, "connection", None)
    if conn is not None and getattr(_local, "path", None) != DB_PATH:
        # DB_PATH was repointed (tests); drop the stale connection
        conn.close()
        conn = None

    if conn is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(DB_PATH),
            timeout=30.0,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        conn.row_factory = sqlite3.Row
        _local.connection = conn
        _local.path = DB_PATH

    return conn


@contextmanager
def get_db():
    """
    Get database connection context manager.

    Usage:
        with get_db() as conn:
            cursor = conn.execute("SELECT ...")
    """
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.

    Creates tables if they don't exist.
    Safe to call multiple times (idempotent).
    """
    global _initialized

    with _init_lock:
        if _initialized:
            return

        with get_db() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    name TEXT NOT NULL DEFAULT '',
                    stripe_customer_id TEXT,
                    card_brand TEXT,
                    card_last_four TEXT,
                    trial_ends_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_users_stripe_customer
                ON users(stripe_customer_id)
            """)

            # owner_id may reference any billable entity, not only users.
            # No uniqueness on (owner_id, name): several rows may share a
            # name once older ones have ended.
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    stripe_subscription_id TEXT NOT NULL,
                    stripe_plan_id TEXT NOT NULL,
                    quantity INTEGER NOT NULL DEFAULT 1,
                    trial_ends_at TEXT,
                    ends_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_subscriptions_owner
                ON subscriptions(owner_id, name)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_subscriptions_stripe
                ON subscriptions(stripe_subscription_id)
            """)

            _logger.info(f"Database initialized at {DB_PATH}")
            _initialized = True


def close_db() -> None:
    """Close thread-local database connection."""
    if getattr(_local, "connection", None) is not None:
        _local.connection.close()
        _local.connection = None
        _local.path = None


def reset_db() -> None:
    """Reset database (for testing). Drops all tables."""
    global _initialized

    with _init_lock:
        with get_db() as conn:
            conn.execute("DROP TABLE IF EXISTS subscriptions")
            conn.execute("DROP TABLE IF EXISTS users")
        _initialized = False


def get_db_path() -> Path:
    """Get the database file path."""
    return DB_PATH


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a fixed-width UTC ISO string (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
