"""Free-text search composed with structured filters."""

from typing import Optional

from pydantic import BaseModel, Field

from .db import Store
from .models import Command, SearchResult, SummarySearchResult


# Fetch this many times the limit before filtering so post-filters rarely starve.
OVERFETCH = 2


class SearchOptions(BaseModel):
    query: str = ""
    repo: Optional[str] = None
    dir: Optional[str] = None
    failed_only: bool = False
    limit: int = Field(50, ge=0)


def matches_filters(command: Command, opts: SearchOptions) -> bool:
    """Structured predicates applied after the ranked query.

    Unknown exit codes never count as failures.
    """
    if opts.failed_only and not command.failed:
        return False
    if opts.repo is not None and command.git_repo != opts.repo:
        return False
    if opts.dir is not None and (command.cwd is None or opts.dir not in command.cwd):
        return False
    return True


def search(store: Store, opts: SearchOptions) -> list[SearchResult]:
    """Ranked full-text search, filtered, then truncated to ``opts.limit``.

    Results keep the index's rank order (ascending, most relevant first).
    The query string is passed to FTS5 unvalidated.
    """
    results = store.search_commands(opts.query, opts.limit * OVERFETCH)
    results = [r for r in results if matches_filters(r.command, opts)]
    return results[: opts.limit]


def search_summaries(store: Store, query: str, limit: int = 20) -> list[SummarySearchResult]:
    return store.search_summaries(query, limit)


def recent(store: Store, limit: int) -> list[Command]:
    """Most recent commands, unranked."""
    return store.recent_commands(limit)
