"""Event store for recall-cli.

One SQLite file in WAL mode: readers never block on the single writer, and a
writer that cannot get the lock within ``BUSY_TIMEOUT_S`` fails with
StoreError instead of waiting forever. Every write runs inside an explicit
``BEGIN IMMEDIATE`` transaction together with its shadow-index entry.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from pathlib import Path

import structlog

from . import index, schema
from .config import ensure_db_dir, get_db_path
from .errors import StoreError
from .models import (
    Command,
    SearchResult,
    Session,
    SessionOverview,
    Stats,
    Summary,
    SummarySearchResult,
)


logger = structlog.get_logger(__name__)

BUSY_TIMEOUT_S = 5.0

COMMAND_COLUMNS = (
    "id, session_id, command_text, timestamp, duration_ms, cwd, "
    "git_repo, git_branch, exit_code, output"
)
SESSION_COLUMNS = "id, start_time, end_time, terminal_app, initial_dir"
SUMMARY_COLUMNS = "id, session_id, summary_text, tags, intent, created_at"

# Messages FTS5 produces for query strings it cannot parse.
_QUERY_ERROR_MARKERS = ("fts5", "syntax error", "no such column", "unterminated string")


def _is_query_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _QUERY_ERROR_MARKERS)


def _command(row: sqlite3.Row) -> Command:
    return Command.model_validate(dict(row))


class Store:
    """Durable sessions, commands and summaries plus their full-text index."""

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self._conn = conn
        self._depth = 0
        self.path = path

    @classmethod
    def open(cls, db_path: str | Path | None = None) -> "Store":
        """Open (creating if needed) the database and initialize its schema.

        Args:
            db_path: Optional override for database path

        Returns:
            Ready-to-use Store; close it or use it as a context manager
        """
        path = get_db_path(str(db_path) if db_path else None)
        ensure_db_dir(path)

        try:
            conn = sqlite3.connect(
                str(path),
                timeout=BUSY_TIMEOUT_S,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to open database at {path}") from exc

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={int(BUSY_TIMEOUT_S * 1000)}")
            schema.initialize(conn)
        except sqlite3.Error as exc:
            conn.close()
            raise StoreError(f"Failed to initialize schema at {path}") from exc

        logger.debug("store.opened", path=str(path))
        return cls(conn, path)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Transactions ──────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Run the enclosed writes as one atomic unit.

        Re-entrant: nested blocks join the outermost transaction, which alone
        commits or rolls back.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise StoreError("Could not acquire the write lock") from exc

        self._depth = 1
        try:
            yield self
        except BaseException:
            self._rollback()
            raise
        else:
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback()
                raise StoreError("Failed to commit transaction") from exc
        finally:
            self._depth = 0

    def _rollback(self) -> None:
        # SQLite may already have rolled back on its own (e.g. SQLITE_FULL).
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Query failed: {exc}") from exc

    # ── Writes ────────────────────────────────────────────

    def put_session(self, session: Session) -> None:
        """Insert the session unless its id already exists. Never overwrites."""
        with self.transaction():
            try:
                self._conn.execute(
                    f"INSERT OR IGNORE INTO sessions ({SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (
                        session.id,
                        session.start_time,
                        session.end_time,
                        session.terminal_app,
                        session.initial_dir,
                    ),
                )
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to insert session {session.id}") from exc

    def put_command(self, command: Command) -> int:
        """Insert a command and its index entry; return the assigned id.

        The session must already exist (see put_session).
        """
        with self.transaction():
            try:
                cursor = self._conn.execute(
                    "INSERT INTO commands (session_id, command_text, timestamp, duration_ms, "
                    "cwd, git_repo, git_branch, exit_code, output) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        command.session_id,
                        command.command_text,
                        command.timestamp,
                        command.duration_ms,
                        command.cwd,
                        command.git_repo,
                        command.git_branch,
                        command.exit_code,
                        command.output,
                    ),
                )
            except sqlite3.Error as exc:
                logger.warning(
                    "store.command_rejected", session_id=command.session_id, error=str(exc)
                )
                raise StoreError(
                    f"Failed to insert command for session {command.session_id}: {exc}"
                ) from exc
            command_id = cursor.lastrowid
            index.index_command(self._conn, command_id, command)
        return command_id

    def put_summary(self, summary: Summary) -> int:
        """Store the summary for a session, replacing any earlier one.

        A replaced summary keeps its row id; its index entry is rewritten.
        """
        with self.transaction():
            try:
                existing = self._conn.execute(
                    f"SELECT {SUMMARY_COLUMNS} FROM summaries WHERE session_id = ?",
                    (summary.session_id,),
                ).fetchone()
                if existing is None:
                    cursor = self._conn.execute(
                        "INSERT INTO summaries (session_id, summary_text, tags, intent, created_at) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (
                            summary.session_id,
                            summary.summary_text,
                            summary.tags,
                            summary.intent,
                            summary.created_at,
                        ),
                    )
                    summary_id = cursor.lastrowid
                else:
                    summary_id = existing["id"]
                    index.unindex_summary(self._conn, summary_id, existing)
                    self._conn.execute(
                        "UPDATE summaries SET summary_text = ?, tags = ?, intent = ?, created_at = ? "
                        "WHERE id = ?",
                        (
                            summary.summary_text,
                            summary.tags,
                            summary.intent,
                            summary.created_at,
                            summary_id,
                        ),
                    )
                    logger.info("store.summary_replaced", session_id=summary.session_id)
            except sqlite3.Error as exc:
                raise StoreError(
                    f"Failed to store summary for session {summary.session_id}: {exc}"
                ) from exc
            index.index_summary(self._conn, summary_id, summary)
        return summary_id

    def rebuild_index(self) -> dict[str, int]:
        with self.transaction():
            return index.rebuild(self._conn)

    # ── Reads ─────────────────────────────────────────────

    def get_session(self, session_id: str) -> Session | None:
        rows = self._query(f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,))
        return Session.model_validate(dict(rows[0])) if rows else None

    def commands_in_session(self, session_id: str) -> list[Command]:
        rows = self._query(
            f"SELECT {COMMAND_COLUMNS} FROM commands WHERE session_id = ? "
            "ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        return [_command(row) for row in rows]

    def commands_between(self, start_ms: int, end_ms: int) -> list[Command]:
        """Commands with start_ms <= timestamp < end_ms, oldest first."""
        rows = self._query(
            f"SELECT {COMMAND_COLUMNS} FROM commands WHERE timestamp >= ? AND timestamp < ? "
            "ORDER BY timestamp ASC, id ASC",
            (start_ms, end_ms),
        )
        return [_command(row) for row in rows]

    def commands_on_day(self, day: date) -> list[Command]:
        """Commands recorded on ``day`` in local time."""
        start = datetime.combine(day, time())
        end = datetime.combine(day + timedelta(days=1), time())
        return self.commands_between(int(start.timestamp() * 1000), int(end.timestamp() * 1000))

    def recent_commands(self, limit: int) -> list[Command]:
        rows = self._query(
            f"SELECT {COMMAND_COLUMNS} FROM commands ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [_command(row) for row in rows]

    def sessions_page(self, limit: int, offset: int = 0) -> list[Session]:
        rows = self._query(
            f"SELECT {SESSION_COLUMNS} FROM sessions ORDER BY start_time DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [Session.model_validate(dict(row)) for row in rows]

    def session_overview(self, session: Session) -> SessionOverview:
        commands = self.commands_in_session(session.id)
        failures = sum(1 for c in commands if c.failed)
        return SessionOverview(
            **session.model_dump(),
            command_count=len(commands),
            has_failures=failures > 0,
            failure_count=failures,
            repos=sorted({c.git_repo for c in commands if c.git_repo}),
            branches=sorted({c.git_branch for c in commands if c.git_branch}),
        )

    def session_overviews(self, limit: int, offset: int = 0) -> list[SessionOverview]:
        """Sessions newest first with aggregates. One query per session, no snapshot."""
        return [self.session_overview(s) for s in self.sessions_page(limit, offset)]

    def unsummarized_sessions(self, min_command_count: int) -> list[str]:
        """Ids of sessions with no summary and at least ``min_command_count`` commands."""
        rows = self._query(
            "SELECT s.id FROM sessions s "
            "LEFT JOIN summaries su ON su.session_id = s.id "
            "WHERE su.id IS NULL "
            "GROUP BY s.id "
            "HAVING (SELECT COUNT(*) FROM commands c WHERE c.session_id = s.id) >= ? "
            "ORDER BY s.start_time ASC",
            (min_command_count,),
        )
        return [row["id"] for row in rows]

    def summary_for_session(self, session_id: str) -> Summary | None:
        rows = self._query(
            f"SELECT {SUMMARY_COLUMNS} FROM summaries WHERE session_id = ?", (session_id,)
        )
        return Summary.model_validate(dict(rows[0])) if rows else None

    def stats(self) -> Stats:
        row = self._query(
            "SELECT (SELECT COUNT(*) FROM sessions) AS sessions, "
            "(SELECT COUNT(*) FROM commands) AS commands, "
            "(SELECT COUNT(*) FROM commands WHERE exit_code IS NOT NULL AND exit_code != 0) AS failures"
        )[0]
        repo_names = [
            r["git_repo"]
            for r in self._query(
                "SELECT DISTINCT git_repo FROM commands WHERE git_repo IS NOT NULL ORDER BY git_repo"
            )
        ]
        return Stats(
            sessions=row["sessions"],
            commands=row["commands"],
            failures=row["failures"],
            repos=len(repo_names),
            repo_names=repo_names,
        )

    # ── Full-text ─────────────────────────────────────────

    def _match(self, sql: str, query: str, limit: int) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, (query, limit)).fetchall()
        except sqlite3.OperationalError as exc:
            if _is_query_error(exc):
                logger.debug("store.unmatchable_query", query=query, error=str(exc))
                return []
            raise StoreError(f"Search failed: {exc}") from exc
        except sqlite3.Error as exc:
            raise StoreError(f"Search failed: {exc}") from exc

    def search_commands(self, query: str, limit: int) -> list[SearchResult]:
        """Ranked MATCH over the command index, most relevant (lowest rank) first."""
        columns = ", ".join(f"c.{col.strip()}" for col in COMMAND_COLUMNS.split(","))
        rows = self._match(
            f"SELECT {columns}, f.rank AS rank FROM commands_fts f "
            "JOIN commands c ON c.id = f.rowid "
            "WHERE commands_fts MATCH ? ORDER BY f.rank, f.rowid LIMIT ?",
            query,
            limit,
        )
        results = []
        for row in rows:
            data = dict(row)
            rank = data.pop("rank")
            results.append(SearchResult(command=Command.model_validate(data), rank=rank))
        return results

    def search_summaries(self, query: str, limit: int) -> list[SummarySearchResult]:
        columns = ", ".join(f"s.{col.strip()}" for col in SUMMARY_COLUMNS.split(","))
        rows = self._match(
            f"SELECT {columns}, f.rank AS rank FROM summaries_fts f "
            "JOIN summaries s ON s.id = f.rowid "
            "WHERE summaries_fts MATCH ? ORDER BY f.rank, f.rowid LIMIT ?",
            query,
            limit,
        )
        results = []
        for row in rows:
            data = dict(row)
            rank = data.pop("rank")
            results.append(SummarySearchResult(summary=Summary.model_validate(data), rank=rank))
        return results
