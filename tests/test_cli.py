"""Tests for the triagekit CLI, run against a temporary data directory."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from triagekit.cli import app
from triagekit.models import Group
from triagekit.storage.cache import SignalStore
from triagekit.storage.db import get_connection
from triagekit.storage.repository import Repository

from conftest import make_issue

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    directory = tmp_path / "data"
    monkeypatch.setenv("TRIAGEKIT_DATA_DIR", str(directory))
    monkeypatch.delenv("TRIAGEKIT_DB_PATH", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return directory


def _export(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "1",
                    "content": "Getting a CSRF error on login after configuring trusted origins",
                    "timestamp": "2024-06-01T10:00:00Z",
                    "author": {"username": "alice"},
                },
                {
                    "id": "2",
                    "content": "Same CSRF error on login with trusted origins here",
                    "timestamp": "2024-06-01T11:00:00Z",
                    "author": {"username": "bob"},
                    "thread": {"id": "t1", "name": "CSRF after upgrade"},
                },
            ]
        )
    )
    return path


class TestImportAndClassify:
    def test_import_chat(self, data_dir, tmp_path):
        result = runner.invoke(app, ["import-chat", str(_export(tmp_path)), "--channel", "support"])

        assert result.exit_code == 0, result.output
        assert "1 thread(s), 1 standalone" in result.output
        assert SignalStore(data_dir).load("chat-support").total_count == 2

    def test_import_bad_file(self, data_dir, tmp_path):
        path = tmp_path / "export.json"
        path.write_text('{"data": 1}')
        result = runner.invoke(app, ["import-chat", str(path), "--channel", "support"])
        assert result.exit_code == 1

    def test_classify_then_group(self, data_dir, tmp_path):
        store = SignalStore(data_dir)
        store.save(
            "issues",
            [make_issue(101, "CSRF error with trusted origins", "CSRF error on login")],
        )
        runner.invoke(app, ["import-chat", str(_export(tmp_path)), "--channel", "support"])

        classified = runner.invoke(app, ["classify", "--channel", "support"])
        assert classified.exit_code == 0, classified.output
        assert "Classified:      2 of 2 selected" in classified.output

        grouped = runner.invoke(
            app, ["group", "--channel", "support", "--min-similarity", "0.2"]
        )
        assert grouped.exit_code == 0, grouped.output
        assert "issue-101" in grouped.output

    def test_classify_without_messages(self, data_dir):
        result = runner.invoke(app, ["classify", "--channel", "empty"])
        assert result.exit_code == 1


class TestGroupsCommands:
    def test_mark_exported_and_stats(self, data_dir):
        conn = get_connection(data_dir / "triagekit.db")
        Repository(conn).save_group(Group(id="issue-7", title="Login loop", unit_ids=["u1"]))
        conn.close()

        marked = runner.invoke(app, ["mark-exported", "issue-7", "abc", "--identifier", "ENG-7"])
        assert marked.exit_code == 0, marked.output
        assert "ENG-7" in marked.output

        stats = runner.invoke(app, ["stats"])
        assert stats.exit_code == 0, stats.output
        assert "1 exported" in stats.output

    def test_mark_unknown_group(self, data_dir):
        result = runner.invoke(app, ["mark-exported", "nope", "abc"])
        assert result.exit_code == 1

    def test_sync_requires_repo(self, data_dir, monkeypatch):
        monkeypatch.delenv("TRIAGEKIT_REPO", raising=False)
        monkeypatch.setenv("TRIAGEKIT_GITHUB_TOKEN", "ghp_test")
        result = runner.invoke(app, ["sync-issues"])
        assert result.exit_code == 1
        assert "Repository not set" in result.output
