"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS groups (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    is_cross_cutting INTEGER NOT NULL DEFAULT 0,
    affected_features TEXT,
    priority TEXT NOT NULL DEFAULT 'medium',
    similarity REAL,
    canonical_unit_id TEXT,
    export_status TEXT NOT NULL DEFAULT 'pending',
    external_id TEXT,
    external_url TEXT,
    external_identifier TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    exported_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS group_members (
    group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    member_id TEXT NOT NULL,
    member_type TEXT NOT NULL,
    PRIMARY KEY (group_id, member_id, member_type)
);

CREATE TABLE IF NOT EXISTS embeddings (
    content_hash TEXT NOT NULL,
    model TEXT NOT NULL,
    vector TEXT NOT NULL,
    created_at TIMESTAMP,
    PRIMARY KEY (content_hash, model)
);

CREATE INDEX IF NOT EXISTS idx_groups_status ON groups(export_status);
CREATE INDEX IF NOT EXISTS idx_group_members_member ON group_members(member_id);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the triagekit schema."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
