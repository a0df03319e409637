"""SQLite database connection management and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from agent_inbox.errors import StoreUnavailableError

SCHEMA_VERSION = 1

# Seconds a writer waits on a locked database before OperationalError.
BUSY_TIMEOUT = 5.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT UNIQUE NOT NULL,
    agent_type TEXT NOT NULL,
    title TEXT NOT NULL,
    status TEXT NOT NULL CHECK (
        status IN ('running', 'completed', 'needs_attention', 'failed', 'exited')
    ),
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    completed_at REAL,
    pid INTEGER,
    ppid INTEGER,
    monitor_pid INTEGER,
    attention_reason TEXT,
    exit_code INTEGER,
    context TEXT
);

CREATE INDEX IF NOT EXISTS idx_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_updated_at ON tasks(updated_at);
CREATE INDEX IF NOT EXISTS idx_pid ON tasks(pid);
CREATE INDEX IF NOT EXISTS idx_completed_at ON tasks(completed_at);
"""


def _ensure_schema_version(conn: sqlite3.Connection):
    row = conn.execute("SELECT version FROM schema_version").fetchone()
    if row is None:
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
    elif row["version"] > SCHEMA_VERSION:
        raise StoreUnavailableError(
            f"Database schema version {row['version']} is newer than supported ({SCHEMA_VERSION})"
        )


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed."""
    conn = None
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        # Monitors and the bridge host write from separate processes.
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)
        _ensure_schema_version(conn)
        conn.commit()
    except StoreUnavailableError:
        conn.close()
        raise
    except (sqlite3.DatabaseError, OSError) as e:
        if conn is not None:
            conn.close()
        raise StoreUnavailableError(f"Cannot open task database {db_path}: {e}") from e
    return conn


@contextmanager
def get_db(db_path: Path):
    """Context manager for database connections."""
    conn = init_db(db_path)
    try:
        yield conn
    finally:
        conn.close()
