"""Configuration and path resolution for recall-cli."""

import os
import tomllib
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


DEFAULT_IGNORE_PATTERNS = [
    "export *KEY*",
    "export *SECRET*",
    "export *TOKEN*",
    "export *PASSWORD*",
    "*AWS_SECRET*",
]


class PrivacyConfig(BaseModel):
    ignore_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    redact_patterns: list[str] = []


class LLMConfig(BaseModel):
    provider: Literal["anthropic", "bedrock"] = "anthropic"
    api_key: Optional[str] = None
    model: str = "claude-sonnet-4-5"
    base_url: str = "https://api.anthropic.com"
    aws_region: Optional[str] = None


class Config(BaseModel):
    privacy: PrivacyConfig = Field(default_factory=PrivacyConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)


def get_recall_dir() -> Path:
    """Get the data directory (~/.recall, or RECALL_HOME)."""
    env_home = os.environ.get("RECALL_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".recall"


def get_config_path() -> Path:
    return get_recall_dir() / "config.toml"


def get_env_path() -> Path:
    return get_recall_dir() / "env"


def get_pause_path() -> Path:
    """Marker file whose presence means recording is paused."""
    return get_recall_dir() / ".paused"


def get_db_path(override: str | None = None) -> Path:
    """Resolve database path.

    Priority:
    1. --db PATH explicit override (highest)
    2. RECALL_DB env var
    3. fallback -> <recall dir>/recall.db

    Args:
        override: Explicit path passed via --db flag

    Returns:
        Path to the SQLite database file
    """
    if override:
        return Path(override).expanduser().resolve()

    env_path = os.environ.get("RECALL_DB")
    if env_path:
        return Path(env_path).expanduser().resolve()

    return get_recall_dir() / "recall.db"


def ensure_db_dir(db_path: Path) -> None:
    """Ensure the parent directory for the database exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def is_paused() -> bool:
    return get_pause_path().exists()


def set_paused(paused: bool) -> bool:
    """Create or remove the pause marker. Returns True if the state changed."""
    path = get_pause_path()
    if paused:
        if path.exists():
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
        return True
    if not path.exists():
        return False
    path.unlink()
    return True


def load_config(path: Path | None = None) -> Config:
    """Load config.toml, falling back to defaults when it does not exist.

    The env file next to it is loaded first; variables already present in the
    process environment win.
    """
    env_path = get_env_path()
    if env_path.exists():
        load_dotenv(env_path, override=False)

    path = path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = tomllib.loads(path.read_text())
        return Config.model_validate(data)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as exc:
        raise ConfigError(f"Failed to load config from {path}: {exc}") from exc
