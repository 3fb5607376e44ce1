"""Configuration loading for triagekit.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (TRIAGEKIT_GITHUB_TOKEN, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATA_DIR = Path(".triagekit")
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_MIN_SIMILARITY = 0.2
DEFAULT_GROUP_MIN_SIMILARITY = 0.6
DEFAULT_FIRST_RUN_CAP = 200
DEFAULT_BATCH_SIZE = 50


def _split_tokens(raw: str) -> list[str]:
    return [t.strip() for t in raw.split(",") if t.strip()]


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass
class Config:
    github_tokens: list[str] = field(default_factory=list)
    github_app_id: str = ""
    github_app_installation_id: str = ""
    github_app_private_key_path: str = ""
    repo: str = ""  # "owner/repo"
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    data_dir: Path = DEFAULT_DATA_DIR
    db_path: Path | None = None  # defaults to <data_dir>/triagekit.db
    min_similarity: float = DEFAULT_MIN_SIMILARITY
    group_min_similarity: float = DEFAULT_GROUP_MIN_SIMILARITY
    first_run_cap: int = DEFAULT_FIRST_RUN_CAP
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def load(cls) -> Config:
        tokens = _split_tokens(
            os.getenv("TRIAGEKIT_GITHUB_TOKEN", "") or os.getenv("GITHUB_TOKEN", "")
        )
        db_path = os.getenv("TRIAGEKIT_DB_PATH", "")
        return cls(
            github_tokens=tokens,
            github_app_id=os.getenv("TRIAGEKIT_GITHUB_APP_ID", ""),
            github_app_installation_id=os.getenv("TRIAGEKIT_GITHUB_APP_INSTALLATION_ID", ""),
            github_app_private_key_path=os.getenv("TRIAGEKIT_GITHUB_APP_PRIVATE_KEY_PATH", ""),
            repo=os.getenv("TRIAGEKIT_REPO", ""),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            embedding_model=os.getenv("TRIAGEKIT_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            data_dir=Path(os.getenv("TRIAGEKIT_DATA_DIR", str(DEFAULT_DATA_DIR))),
            db_path=Path(db_path) if db_path else None,
            min_similarity=_float_env("TRIAGEKIT_MIN_SIMILARITY", DEFAULT_MIN_SIMILARITY),
            group_min_similarity=_float_env(
                "TRIAGEKIT_GROUP_MIN_SIMILARITY", DEFAULT_GROUP_MIN_SIMILARITY
            ),
            first_run_cap=_int_env("TRIAGEKIT_FIRST_RUN_CAP", DEFAULT_FIRST_RUN_CAP),
            batch_size=_int_env("TRIAGEKIT_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        )

    @property
    def database_path(self) -> Path:
        return self.db_path or self.data_dir / "triagekit.db"

    @property
    def has_github_app(self) -> bool:
        return bool(
            self.github_app_id
            and self.github_app_installation_id
            and self.github_app_private_key_path
        )

    def validate(self) -> list[str]:
        """Return a list of missing config issues."""
        issues = []
        if not self.github_tokens and not self.has_github_app:
            issues.append(
                "No GitHub credentials (TRIAGEKIT_GITHUB_TOKEN or TRIAGEKIT_GITHUB_APP_*)"
            )
        if not self.repo:
            issues.append("Repository not set (TRIAGEKIT_REPO)")
        elif self.repo.count("/") != 1 or not all(self.repo.split("/")):
            issues.append(f"Repository must look like owner/repo, got '{self.repo}'")
        return issues
