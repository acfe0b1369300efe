"""Test fixtures for recall-cli."""

from pathlib import Path

import pytest

from recall_cli.db import Store
from recall_cli.logs import configure_logging
from recall_cli.models import Command, Session


@pytest.fixture(autouse=True)
def recall_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the data directory at a temp dir so no test touches ~/.recall."""
    home = tmp_path / "recall-home"
    monkeypatch.setenv("RECALL_HOME", str(home))
    monkeypatch.delenv("RECALL_DB", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return home


@pytest.fixture(autouse=True)
def fresh_logging() -> None:
    """Bind structlog to this test's stderr; CliRunner streams close after each invoke."""
    configure_logging()


@pytest.fixture
def temp_db_path(tmp_path: Path) -> str:
    """Return just the path string for --db flag testing."""
    return str(tmp_path / "test_recall.db")


@pytest.fixture
def temp_db(temp_db_path: str, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary database path exposed through RECALL_DB."""
    monkeypatch.setenv("RECALL_DB", temp_db_path)
    return Path(temp_db_path)


@pytest.fixture
def store(temp_db_path: str):
    with Store.open(temp_db_path) as s:
        yield s


def add_command(store: Store, session_id: str = "s1", start_time: int = 1_000, **fields) -> int:
    """Insert a command (and its session if needed); return the command id."""
    store.put_session(Session(id=session_id, start_time=start_time))
    fields.setdefault("command_text", "echo hi")
    fields.setdefault("timestamp", start_time)
    return store.put_command(Command(session_id=session_id, **fields))


@pytest.fixture
def add(store: Store):
    def _add(session_id: str = "s1", start_time: int = 1_000, **fields) -> int:
        return add_command(store, session_id, start_time, **fields)

    return _add
