import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import packages.config as config


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS activity_entries (
      id INTEGER PRIMARY KEY,
      user_id TEXT NOT NULL,
      created_at TEXT NOT NULL,
      distance_m REAL NOT NULL,
      duration_s REAL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_activity_user_time ON activity_entries(user_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS challenge_memberships (
      id TEXT NOT NULL,
      user_id TEXT NOT NULL,
      challenge_id TEXT NOT NULL,
      title TEXT NOT NULL,
      description TEXT NOT NULL DEFAULT '',
      start_date TEXT NOT NULL,
      end_date TEXT NOT NULL,
      target_distance_m REAL,
      is_completed INTEGER NOT NULL DEFAULT 0,
      progress REAL NOT NULL DEFAULT 0,
      joined_at TEXT NOT NULL,
      PRIMARY KEY (user_id, id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_membership_user_joined ON challenge_memberships(user_id, joined_at)",
]


def resolve_path(path: Optional[Path] = None) -> Path:
    return Path(path) if path is not None else config.DB_PATH


def db_exists(path: Optional[Path] = None) -> bool:
    return resolve_path(path).exists()


def get_conn(path: Optional[Path] = None) -> sqlite3.Connection:
    db_path = resolve_path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
    except sqlite3.OperationalError:
        pass
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    for statement in SCHEMA:
        conn.execute(statement)
    conn.commit()


def to_db_time(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical order equal to time order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
