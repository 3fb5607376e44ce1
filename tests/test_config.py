"""Tests for triagekit.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from triagekit.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DATA_DIR,
    DEFAULT_FIRST_RUN_CAP,
    DEFAULT_MIN_SIMILARITY,
    Config,
)

ENV_KEYS = [
    "TRIAGEKIT_GITHUB_TOKEN",
    "GITHUB_TOKEN",
    "TRIAGEKIT_GITHUB_APP_ID",
    "TRIAGEKIT_GITHUB_APP_INSTALLATION_ID",
    "TRIAGEKIT_GITHUB_APP_PRIVATE_KEY_PATH",
    "TRIAGEKIT_REPO",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "TRIAGEKIT_DATA_DIR",
    "TRIAGEKIT_DB_PATH",
    "TRIAGEKIT_MIN_SIMILARITY",
    "TRIAGEKIT_FIRST_RUN_CAP",
    "TRIAGEKIT_BATCH_SIZE",
]


def _clean_env(**overrides) -> dict:
    env = {k: v for k, v in os.environ.items() if k not in ENV_KEYS}
    env.update(overrides)
    return env


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.github_tokens == []
        assert config.repo == ""
        assert config.data_dir == DEFAULT_DATA_DIR
        assert config.min_similarity == DEFAULT_MIN_SIMILARITY
        assert config.first_run_cap == DEFAULT_FIRST_RUN_CAP
        assert config.batch_size == DEFAULT_BATCH_SIZE

    def test_database_path_defaults_to_data_dir(self):
        config = Config(data_dir=Path("/tmp/tk"))
        assert config.database_path == Path("/tmp/tk/triagekit.db")

    def test_explicit_db_path_wins(self):
        config = Config(data_dir=Path("/tmp/tk"), db_path=Path("/tmp/other.db"))
        assert config.database_path == Path("/tmp/other.db")


class TestConfigLoad:
    def test_load_from_env(self):
        env = _clean_env(
            TRIAGEKIT_GITHUB_TOKEN="ghp_one, ghp_two,",
            TRIAGEKIT_REPO="acme/webapp",
            OPENAI_API_KEY="sk-test",
            TRIAGEKIT_DB_PATH="/tmp/test.db",
            TRIAGEKIT_FIRST_RUN_CAP="50",
        )
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.github_tokens == ["ghp_one", "ghp_two"]
        assert config.repo == "acme/webapp"
        assert config.openai_api_key == "sk-test"
        assert config.db_path == Path("/tmp/test.db")
        assert config.first_run_cap == 50

    def test_falls_back_to_github_token(self):
        with patch.dict(os.environ, _clean_env(GITHUB_TOKEN="ghp_plain"), clear=True):
            config = Config.load()
        assert config.github_tokens == ["ghp_plain"]

    def test_bad_numbers_use_defaults(self):
        env = _clean_env(TRIAGEKIT_MIN_SIMILARITY="high", TRIAGEKIT_BATCH_SIZE="lots")
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.min_similarity == DEFAULT_MIN_SIMILARITY
        assert config.batch_size == DEFAULT_BATCH_SIZE

    def test_load_defaults_when_env_empty(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Config.load()
        assert config.github_tokens == []
        assert config.db_path is None


class TestConfigValidate:
    def test_validate_all_missing(self):
        issues = Config().validate()
        assert len(issues) == 2
        assert any("GitHub credentials" in i for i in issues)
        assert any("Repository" in i for i in issues)

    def test_validate_all_present(self):
        config = Config(github_tokens=["ghp_xxx"], repo="acme/webapp")
        assert config.validate() == []

    def test_github_app_counts_as_credentials(self):
        config = Config(
            github_app_id="1",
            github_app_installation_id="2",
            github_app_private_key_path="key.pem",
            repo="acme/webapp",
        )
        assert config.has_github_app
        assert config.validate() == []

    def test_malformed_repo(self):
        config = Config(github_tokens=["ghp_xxx"], repo="webapp")
        issues = config.validate()
        assert len(issues) == 1
        assert "owner/repo" in issues[0]
