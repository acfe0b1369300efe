"""Record types for recall-cli.

Timestamps are milliseconds since the Unix epoch throughout.
"""

from typing import Optional

from pydantic import BaseModel


class Session(BaseModel):
    """One shell invocation. Created at most once per id, never updated."""

    id: str
    start_time: int
    end_time: Optional[int] = None  # never populated by capture
    terminal_app: Optional[str] = None
    initial_dir: Optional[str] = None


class Command(BaseModel):
    """One executed shell command."""

    id: Optional[int] = None  # assigned by the store
    session_id: str
    command_text: str
    timestamp: int
    duration_ms: Optional[int] = None
    cwd: Optional[str] = None
    git_repo: Optional[str] = None
    git_branch: Optional[str] = None
    exit_code: Optional[int] = None  # None means not captured, not success
    output: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.exit_code is not None and self.exit_code != 0


class Summary(BaseModel):
    """LLM digest of a session. At most one per session."""

    id: Optional[int] = None
    session_id: str
    summary_text: str
    tags: Optional[str] = None  # serialized list, opaque to the store
    intent: Optional[str] = None
    created_at: int


class SearchResult(BaseModel):
    command: Command
    rank: float


class SummarySearchResult(BaseModel):
    summary: Summary
    rank: float


class SessionOverview(BaseModel):
    """A session plus aggregates over its commands."""

    id: str
    start_time: int
    end_time: Optional[int] = None
    terminal_app: Optional[str] = None
    initial_dir: Optional[str] = None
    command_count: int = 0
    has_failures: bool = False
    failure_count: int = 0
    repos: list[str] = []
    branches: list[str] = []


class Stats(BaseModel):
    sessions: int
    commands: int
    repos: int
    failures: int
    repo_names: list[str] = []
