"""SQLite database layer for run history.

Manages the SQLite database connection and schema creation. Uses
aiosqlite for async access with WAL mode for concurrent read performance.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# SQL schema for the run history database
_SCHEMA = """
CREATE TABLE IF NOT EXISTS loop_runs (
    run_id           TEXT PRIMARY KEY,
    project_id       TEXT NOT NULL DEFAULT '',
    started_at       TEXT NOT NULL,
    completed_at     TEXT,
    status           TEXT NOT NULL,
    exhausted        INTEGER NOT NULL DEFAULT 0,
    rounds           INTEGER NOT NULL DEFAULT 0,
    converged        INTEGER NOT NULL DEFAULT 0,
    open_blocking    INTEGER NOT NULL DEFAULT 0,
    total_cost       REAL NOT NULL DEFAULT 0.0,
    duration_seconds REAL NOT NULL DEFAULT 0.0,
    state_json       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_loop_runs_started ON loop_runs(started_at);
CREATE INDEX IF NOT EXISTS idx_loop_runs_project ON loop_runs(project_id);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Initialize the database connection and create tables if needed.

    Creates parent directories if they don't exist, enables WAL mode,
    then runs the schema DDL.

    Args:
        db_path: Path to the SQLite database file. Supports ~ expansion.

    Returns:
        An open aiosqlite connection ready for use.
    """
    resolved = Path(db_path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(str(resolved))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.executescript(_SCHEMA)
    await db.commit()

    logger.info("Run history database initialized at %s", resolved)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()
