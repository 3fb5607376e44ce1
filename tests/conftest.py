"""Shared test fixtures for triagekit."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from triagekit.models import ListedItem, Signal, Thread
from triagekit.storage.cache import SignalStore
from triagekit.storage.db import get_connection
from triagekit.storage.history import HistoryStore
from triagekit.storage.repository import Repository

BASE_TIME = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_issue(number: int, title: str = "", body: str = "", hours: int = 0, **metadata) -> Signal:
    created = BASE_TIME + timedelta(hours=hours)
    return Signal(
        source="tracker",
        source_id=str(number),
        title=title or f"Issue {number}",
        body=body,
        permalink=f"https://github.com/acme/webapp/issues/{number}",
        created_at=created,
        updated_at=created,
        metadata={"number": number, "labels": [], **metadata},
    )


def make_message(
    message_id: str,
    body: str,
    hours: int = 0,
    thread_id: str | None = None,
    thread_name: str | None = None,
    author: str = "alice",
) -> Signal:
    return Signal(
        source="chat",
        source_id=message_id,
        title=thread_name or "",
        body=body,
        permalink=f"https://discord.com/channels/1/2/{message_id}",
        created_at=BASE_TIME + timedelta(hours=hours),
        metadata={"author": author, "thread_id": thread_id, "thread_name": thread_name},
    )


def make_unit(unit_id: str, body: str, hours: int = 0) -> Thread:
    return Thread.standalone(make_message(unit_id, body, hours=hours))


class FakeSource:
    """In-memory paged source: items are returned newest first in pages."""

    page_size = 100

    def __init__(self, items: list[Signal], authenticated: bool = True) -> None:
        self.items = sorted(items, key=lambda s: s.last_activity, reverse=True)
        self.authenticated = authenticated
        self.pages_requested: list[int] = []
        self.details_requested: list[str] = []
        self.pull_requests: set[str] = set()

    def list_page(self, page: int, since: datetime | None = None) -> list[ListedItem]:
        self.pages_requested.append(page)
        visible = [s for s in self.items if since is None or s.last_activity >= since]
        rows = visible[page * self.page_size:(page + 1) * self.page_size]
        return [
            ListedItem(id=s.source_id, updated_at=s.updated_at, included=s.source_id not in self.pull_requests)
            for s in rows
        ]

    def fetch_detail(self, item_id: str) -> Signal:
        self.details_requested.append(item_id)
        for item in self.items:
            if item.source_id == item_id:
                return item
        raise KeyError(item_id)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def repo(db_conn: sqlite3.Connection) -> Repository:
    return Repository(db_conn)


@pytest.fixture
def store(tmp_path: Path) -> SignalStore:
    return SignalStore(tmp_path / "cache")


@pytest.fixture
def history_store(tmp_path: Path) -> HistoryStore:
    return HistoryStore(tmp_path / "classification-history.json")


@pytest.fixture
def issues() -> list[Signal]:
    return [
        make_issue(
            101,
            "CSRF token rejected when trusted origins configured",
            "Login fails with a CSRF error after setting trusted origins in the auth config.",
            hours=1,
            labels=["bug"],
        ),
        make_issue(
            102,
            "Drizzle adapter migration fails on postgres",
            "Running the schema migration with the drizzle adapter throws on postgres.",
            hours=2,
        ),
        make_issue(
            103,
            "Support dark mode in the dashboard",
            "It would be nice to have a dark theme for the admin dashboard.",
            hours=3,
            labels=["enhancement"],
        ),
    ]
