"""CRUD operations for groups and cached embeddings."""

from __future__ import annotations

import json
import sqlite3

from triagekit.models import EXPORT_PENDING, EXPORTED, Group, parse_timestamp, utcnow


class Repository:
    """Data access layer for the triagekit SQLite database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def save_group(self, group: Group) -> None:
        """Insert or update a group and replace its membership.

        Export status and external linkage of an existing row are left alone,
        so re-grouping never turns an exported group back into a pending one.
        """
        now = utcnow().isoformat()
        self._conn.execute(
            """INSERT INTO groups
            (id, title, is_cross_cutting, affected_features, priority, similarity,
             canonical_unit_id, export_status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                is_cross_cutting = excluded.is_cross_cutting,
                affected_features = excluded.affected_features,
                priority = excluded.priority,
                similarity = excluded.similarity,
                canonical_unit_id = excluded.canonical_unit_id,
                updated_at = excluded.updated_at""",
            (
                group.id,
                group.title,
                int(group.is_cross_cutting),
                json.dumps(group.affected_features),
                group.priority,
                group.similarity,
                group.canonical_unit_id,
                EXPORT_PENDING,
                group.created_at.isoformat(),
                now,
            ),
        )

        # Membership is derived, so it is rebuilt on every save
        self._conn.execute("DELETE FROM group_members WHERE group_id = ?", (group.id,))
        self._conn.executemany(
            "INSERT OR IGNORE INTO group_members (group_id, member_id, member_type) VALUES (?, ?, ?)",
            [(group.id, unit_id, "unit") for unit_id in group.unit_ids]
            + [(group.id, target_id, "target") for target_id in group.target_ids],
        )
        self._conn.commit()

    def save_groups(self, groups: list[Group]) -> list[Group]:
        """Save groups and return them as stored (with export state filled in)."""
        for group in groups:
            self.save_group(group)
        return [self.get_group(group.id) for group in groups]

    def get_group(self, group_id: str) -> Group | None:
        row = self._conn.execute("SELECT * FROM groups WHERE id = ?", (group_id,)).fetchone()
        return self._row_to_group(row) if row else None

    def get_groups(self, status: str | None = None, limit: int | None = None) -> list[Group]:
        """List groups, largest first, optionally filtered by export status."""
        query = """
            SELECT g.*, COUNT(m.member_id) AS unit_count
            FROM groups g
            LEFT JOIN group_members m ON m.group_id = g.id AND m.member_type = 'unit'
            WHERE 1=1
        """
        params: list = []
        if status:
            query += " AND g.export_status = ?"
            params.append(status)
        query += " GROUP BY g.id ORDER BY unit_count DESC, g.id"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_group(row) for row in rows]

    def mark_group_exported(
        self,
        group_id: str,
        external_id: str,
        url: str | None = None,
        identifier: str | None = None,
    ) -> bool:
        """Record the tracker issue created for a group. Returns False if unknown."""
        cursor = self._conn.execute(
            """UPDATE groups
            SET export_status = ?, external_id = ?, external_url = ?,
                external_identifier = ?, exported_at = ?
            WHERE id = ?""",
            (EXPORTED, external_id, url, identifier, utcnow().isoformat(), group_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def get_embedding(self, content_hash: str, model: str) -> list[float] | None:
        row = self._conn.execute(
            "SELECT vector FROM embeddings WHERE content_hash = ? AND model = ?",
            (content_hash, model),
        ).fetchone()
        return json.loads(row["vector"]) if row else None

    def save_embedding(self, content_hash: str, model: str, vector: list[float]) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO embeddings (content_hash, model, vector, created_at)
            VALUES (?, ?, ?, ?)""",
            (content_hash, model, json.dumps(vector), utcnow().isoformat()),
        )
        self._conn.commit()

    def get_stats(self) -> dict:
        """Get summary statistics about stored groups and embeddings."""
        total = self._conn.execute("SELECT COUNT(*) FROM groups").fetchone()[0]
        exported = self._conn.execute(
            "SELECT COUNT(*) FROM groups WHERE export_status = ?", (EXPORTED,)
        ).fetchone()[0]
        cross_cutting = self._conn.execute(
            "SELECT COUNT(*) FROM groups WHERE is_cross_cutting = 1"
        ).fetchone()[0]
        grouped_units = self._conn.execute(
            "SELECT COUNT(DISTINCT member_id) FROM group_members WHERE member_type = 'unit'"
        ).fetchone()[0]
        embeddings = self._conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]

        return {
            "total_groups": total,
            "exported_groups": exported,
            "pending_groups": total - exported,
            "cross_cutting_groups": cross_cutting,
            "grouped_units": grouped_units,
            "cached_embeddings": embeddings,
        }

    def _row_to_group(self, row: sqlite3.Row) -> Group:
        members = self._conn.execute(
            "SELECT member_id, member_type FROM group_members WHERE group_id = ? ORDER BY rowid",
            (row["id"],),
        ).fetchall()
        return Group(
            id=row["id"],
            title=row["title"],
            unit_ids=[m["member_id"] for m in members if m["member_type"] == "unit"],
            target_ids=[m["member_id"] for m in members if m["member_type"] == "target"],
            is_cross_cutting=bool(row["is_cross_cutting"]),
            affected_features=json.loads(row["affected_features"] or "[]"),
            priority=row["priority"],
            similarity=row["similarity"] or 0.0,
            canonical_unit_id=row["canonical_unit_id"],
            export_status=row["export_status"],
            external_id=row["external_id"],
            external_url=row["external_url"],
            external_identifier=row["external_identifier"],
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
            exported_at=parse_timestamp(row["exported_at"]),
        )
