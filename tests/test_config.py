"""Configuration and path resolution tests."""

import os
from pathlib import Path

import pytest

from recall_cli.config import (
    DEFAULT_IGNORE_PATTERNS,
    get_db_path,
    is_paused,
    load_config,
    set_paused,
)
from recall_cli.errors import ConfigError


class TestDbPath:

    def test_flag_beats_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RECALL_DB", str(tmp_path / "env.db"))
        assert get_db_path(str(tmp_path / "flag.db")) == (tmp_path / "flag.db").resolve()

    def test_env_beats_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RECALL_DB", str(tmp_path / "env.db"))
        assert get_db_path() == (tmp_path / "env.db").resolve()

    def test_default_lives_in_recall_home(self, recall_home: Path) -> None:
        assert get_db_path() == recall_home / "recall.db"


class TestLoadConfig:

    def test_defaults_without_file(self) -> None:
        config = load_config()
        assert config.privacy.ignore_patterns == DEFAULT_IGNORE_PATTERNS
        assert config.llm.provider == "anthropic"
        assert config.llm.api_key is None

    def test_reads_toml_sections(self, recall_home: Path) -> None:
        recall_home.mkdir(parents=True)
        (recall_home / "config.toml").write_text(
            '[privacy]\nignore_patterns = ["ssh *"]\n\n'
            '[llm]\nprovider = "bedrock"\naws_region = "eu-west-1"\n'
        )

        config = load_config()

        assert config.privacy.ignore_patterns == ["ssh *"]
        assert config.llm.provider == "bedrock"
        assert config.llm.aws_region == "eu-west-1"
        assert config.llm.model == "claude-sonnet-4-5"

    def test_invalid_toml_raises_config_error(self, recall_home: Path) -> None:
        recall_home.mkdir(parents=True)
        (recall_home / "config.toml").write_text("[llm\nprovider = ")

        with pytest.raises(ConfigError):
            load_config()

    def test_unknown_provider_raises_config_error(self, recall_home: Path) -> None:
        recall_home.mkdir(parents=True)
        (recall_home / "config.toml").write_text('[llm]\nprovider = "openai"\n')

        with pytest.raises(ConfigError):
            load_config()

    def test_env_file_does_not_override_shell(
        self, recall_home: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recall_home.mkdir(parents=True)
        (recall_home / "env").write_text("RECALL_TEST_SHELL=from-file\nRECALL_TEST_FILE=from-file\n")
        monkeypatch.setenv("RECALL_TEST_SHELL", "from-shell")
        # Registered so monkeypatch removes whatever the env file sets.
        monkeypatch.setenv("RECALL_TEST_FILE", "")
        monkeypatch.delenv("RECALL_TEST_FILE")

        load_config()

        assert os.environ["RECALL_TEST_SHELL"] == "from-shell"
        assert os.environ["RECALL_TEST_FILE"] == "from-file"


class TestPause:

    def test_pause_marker_round_trip(self, recall_home: Path) -> None:
        assert not is_paused()
        assert set_paused(True) is True
        assert (recall_home / ".paused").exists()
        assert set_paused(True) is False
        assert is_paused()

        assert set_paused(False) is True
        assert set_paused(False) is False
        assert not is_paused()
