"""Database schema for recall-cli."""

import sqlite3

import structlog

from . import index


logger = structlog.get_logger(__name__)


BASE_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    start_time INTEGER NOT NULL,
    end_time INTEGER,
    terminal_app TEXT,
    initial_dir TEXT
);

CREATE TABLE IF NOT EXISTS commands (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    command_text TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    duration_ms INTEGER,
    cwd TEXT,
    git_repo TEXT,
    git_branch TEXT,
    exit_code INTEGER,
    output TEXT,
    FOREIGN KEY (session_id) REFERENCES sessions(id)
);

CREATE TABLE IF NOT EXISTS summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    summary_text TEXT NOT NULL,
    tags TEXT,
    intent TEXT,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id)
);

CREATE INDEX IF NOT EXISTS idx_commands_session ON commands(session_id);
CREATE INDEX IF NOT EXISTS idx_commands_timestamp ON commands(timestamp);
CREATE INDEX IF NOT EXISTS idx_commands_exit_code ON commands(exit_code);
CREATE INDEX IF NOT EXISTS idx_commands_git_repo ON commands(git_repo);
CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions(start_time);
"""

# Older databases synced the shadow tables with triggers. Index writes are now
# explicit, so the triggers would double-insert.
LEGACY_TRIGGERS = ("commands_ai", "summaries_ai")

# Created after duplicate summaries from older databases are collapsed.
SUMMARY_SESSION_INDEX = (
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_summaries_session ON summaries(session_id)"
)


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


def _migrate(conn: sqlite3.Connection) -> None:
    columns = {row[1] for row in conn.execute("PRAGMA table_info(commands)")}
    if "output" not in columns:
        logger.info("schema.migrate", added_column="commands.output")
        conn.execute("ALTER TABLE commands ADD COLUMN output TEXT")

    for trigger in LEGACY_TRIGGERS:
        conn.execute(f"DROP TRIGGER IF EXISTS {trigger}")


def _dedupe_summaries(conn: sqlite3.Connection) -> None:
    """Keep only the newest summary per session, then resync the summary index."""
    duplicate = conn.execute(
        "SELECT 1 FROM summaries GROUP BY session_id HAVING COUNT(*) > 1 LIMIT 1"
    ).fetchone()
    if duplicate is None:
        return

    cursor = conn.execute(
        "DELETE FROM summaries WHERE id NOT IN "
        "(SELECT MAX(id) FROM summaries GROUP BY session_id)"
    )
    logger.info("schema.migrate", removed_duplicate_summaries=cursor.rowcount)
    conn.execute(f"INSERT INTO {index.SUMMARIES_FTS} ({index.SUMMARIES_FTS}) VALUES ('rebuild')")


def initialize(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if absent. Safe to call on every open.

    Shadow tables are created only after an existence check and are filled
    from whatever rows the base table already holds.
    """
    conn.executescript(BASE_SCHEMA)
    _migrate(conn)

    for name, ddl in index.SHADOW_TABLES.items():
        if not table_exists(conn, name):
            logger.info("schema.create_shadow_table", table=name)
            conn.execute(ddl)
            conn.execute(f"INSERT INTO {name} ({name}) VALUES ('rebuild')")

    _dedupe_summaries(conn)
    conn.execute(SUMMARY_SESSION_INDEX)
