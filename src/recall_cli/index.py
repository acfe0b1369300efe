"""Full-text shadow index maintenance.

Each text-bearing table has an FTS5 shadow table keyed by the source row id.
The store calls these functions inside the same transaction as the base write,
so a failure here rolls the base row back with it.
"""

import sqlite3

import structlog

from .errors import SearchIndexError
from .models import Command, Summary


logger = structlog.get_logger(__name__)


COMMANDS_FTS = "commands_fts"
SUMMARIES_FTS = "summaries_fts"

SHADOW_TABLES = {
    COMMANDS_FTS: """
        CREATE VIRTUAL TABLE commands_fts USING fts5(
            command_text, cwd, git_repo, git_branch,
            content='commands', content_rowid='id'
        )
    """,
    SUMMARIES_FTS: """
        CREATE VIRTUAL TABLE summaries_fts USING fts5(
            summary_text, tags,
            content='summaries', content_rowid='id'
        )
    """,
}


def index_command(conn: sqlite3.Connection, command_id: int, command: Command) -> None:
    """Tokenize command_text, cwd, git_repo and git_branch for ``command_id``."""
    try:
        conn.execute(
            "INSERT INTO commands_fts (rowid, command_text, cwd, git_repo, git_branch) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                command_id,
                command.command_text,
                command.cwd,
                command.git_repo,
                command.git_branch,
            ),
        )
    except sqlite3.Error as exc:
        logger.error("index.command_failed", command_id=command_id, error=str(exc))
        raise SearchIndexError(f"Failed to index command {command_id}") from exc


def index_summary(conn: sqlite3.Connection, summary_id: int, summary: Summary) -> None:
    """Tokenize summary_text and tags for ``summary_id``."""
    try:
        conn.execute(
            "INSERT INTO summaries_fts (rowid, summary_text, tags) VALUES (?, ?, ?)",
            (summary_id, summary.summary_text, summary.tags),
        )
    except sqlite3.Error as exc:
        logger.error("index.summary_failed", summary_id=summary_id, error=str(exc))
        raise SearchIndexError(f"Failed to index summary {summary_id}") from exc


def unindex_summary(conn: sqlite3.Connection, summary_id: int, old: sqlite3.Row) -> None:
    """Drop the entry for a summary that is about to be replaced.

    External-content FTS5 tables need the previously indexed values to delete.
    """
    try:
        conn.execute(
            "INSERT INTO summaries_fts (summaries_fts, rowid, summary_text, tags) "
            "VALUES ('delete', ?, ?, ?)",
            (summary_id, old["summary_text"], old["tags"]),
        )
    except sqlite3.Error as exc:
        logger.error("index.summary_delete_failed", summary_id=summary_id, error=str(exc))
        raise SearchIndexError(f"Failed to unindex summary {summary_id}") from exc


def rebuild(conn: sqlite3.Connection) -> dict[str, int]:
    """Regenerate both shadow tables from their base tables.

    Returns the number of source rows per shadow table.
    """
    counts = {}
    for table, source in ((COMMANDS_FTS, "commands"), (SUMMARIES_FTS, "summaries")):
        try:
            conn.execute(f"INSERT INTO {table} ({table}) VALUES ('rebuild')")
        except sqlite3.Error as exc:
            raise SearchIndexError(f"Failed to rebuild {table}") from exc
        counts[table] = conn.execute(f"SELECT COUNT(*) FROM {source}").fetchone()[0]
    logger.info("index.rebuilt", **counts)
    return counts
