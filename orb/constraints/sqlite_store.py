"""
Tool: SQLite Constraint Store
Purpose: Relational persistence for constraint sets

Constraint sets and their constraints live in two tables joined by set_id.
List- and map-valued fields are stored as JSON text. System-wide sets have
user_id NULL and are merged with the requesting user's own sets.

Tables:
    orb_constraint_sets: one row per set (applies_to as JSON)
    orb_constraints: one row per constraint, ordered by position within its set

Usage:
    from orb.constraints.sqlite_store import SqliteConstraintStore

    store = SqliteConstraintStore("data/orb.db")
    store.save_constraint_set(my_set)

Dependencies:
    - sqlite3 (stdlib)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from orb.constraints import AppliesTo, Constraint, ConstraintSet
from orb.constraints.store import ConstraintStore
from orb.errors import ConstraintNotFoundError
from orb.identity import Mode, Persona

logger = logging.getLogger(__name__)

# Constraint fields stored as JSON text
JSON_COLUMNS = (
    "blocked_modes",
    "blocked_personas",
    "allowed_devices",
    "applies_to_roles",
    "time_window",
)

CONSTRAINT_COLUMNS = (
    "id",
    "set_id",
    "position",
    "type",
    "severity",
    "active",
    "description",
    "tool_id",
    "max_risk",
    "required_persona",
    *JSON_COLUMNS,
    "created_by",
    "created_at",
    "updated_at",
)


class SqliteConstraintStore(ConstraintStore):
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        conn = self.get_connection()
        conn.close()

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")

        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orb_constraint_sets (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                name TEXT NOT NULL,
                description TEXT,
                applies_to TEXT NOT NULL DEFAULT '{}',
                priority INTEGER DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orb_constraints (
                id TEXT NOT NULL,
                set_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                type TEXT NOT NULL,
                severity TEXT NOT NULL,
                active INTEGER DEFAULT 1,
                description TEXT,
                tool_id TEXT,
                max_risk TEXT,
                required_persona TEXT,
                blocked_modes TEXT,
                blocked_personas TEXT,
                allowed_devices TEXT,
                applies_to_roles TEXT,
                time_window TEXT,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (set_id, id),
                FOREIGN KEY (set_id) REFERENCES orb_constraint_sets(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_orb_sets_user ON orb_constraint_sets(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_orb_constraints_id ON orb_constraints(id)")

        conn.commit()
        return conn

    # ─────────────────────────────────────────────────────────────────────
    # Row conversion
    # ─────────────────────────────────────────────────────────────────────

    @staticmethod
    def _constraint_row(constraint: Constraint, set_id: str, position: int) -> tuple:
        data = constraint.to_dict()
        values: dict[str, Any] = {
            "set_id": set_id,
            "position": position,
            "active": 1 if constraint.active else 0,
        }
        for column in CONSTRAINT_COLUMNS:
            if column in values:
                continue
            value = data.get(column)
            if column in JSON_COLUMNS and value is not None:
                value = json.dumps(value)
            values[column] = value
        return tuple(values[c] for c in CONSTRAINT_COLUMNS)

    @staticmethod
    def _row_to_constraint(row: sqlite3.Row) -> Constraint:
        data = dict(row)
        data.pop("set_id", None)
        data.pop("position", None)
        data["active"] = bool(data["active"])
        for column in JSON_COLUMNS:
            if data.get(column) is not None:
                data[column] = json.loads(data[column])
        return Constraint.from_dict(data)

    def _load_constraints(self, cursor: sqlite3.Cursor, set_id: str) -> list[Constraint]:
        cursor.execute(
            "SELECT * FROM orb_constraints WHERE set_id = ? ORDER BY position",
            (set_id,),
        )
        return [self._row_to_constraint(row) for row in cursor.fetchall()]

    def _row_to_set(self, cursor: sqlite3.Cursor, row: sqlite3.Row) -> ConstraintSet:
        return ConstraintSet(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            constraints=self._load_constraints(cursor, row["id"]),
            applies_to=AppliesTo.from_dict(json.loads(row["applies_to"] or "{}")),
            priority=row["priority"],
            user_id=row["user_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # ─────────────────────────────────────────────────────────────────────
    # ConstraintStore
    # ─────────────────────────────────────────────────────────────────────

    def get_constraint_sets(
        self,
        user_id: str | None,
        mode: Mode,
        persona: Persona | None = None,
    ) -> list[ConstraintSet]:
        mode = Mode(mode)
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM orb_constraint_sets
                WHERE user_id IS NULL OR user_id = ?
                ORDER BY priority DESC, id ASC
            """,
                (user_id,),
            )
            rows = cursor.fetchall()

            result = []
            for row in rows:
                applies_to = AppliesTo.from_dict(json.loads(row["applies_to"] or "{}"))
                if applies_to.matches(mode, persona):
                    result.append(self._row_to_set(cursor, row))
            return result
        finally:
            conn.close()

    def list_constraint_sets(self, user_id: str | None = None) -> list[ConstraintSet]:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM orb_constraint_sets
                WHERE user_id IS NULL OR user_id = ?
                ORDER BY priority DESC, id ASC
            """,
                (user_id,),
            )
            return [self._row_to_set(cursor, row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def save_constraint_set(self, constraint_set: ConstraintSet) -> None:
        now = datetime.now().isoformat()
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO orb_constraint_sets
                    (id, user_id, name, description, applies_to, priority, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id = excluded.user_id,
                    name = excluded.name,
                    description = excluded.description,
                    applies_to = excluded.applies_to,
                    priority = excluded.priority,
                    updated_at = excluded.updated_at
            """,
                (
                    constraint_set.id,
                    constraint_set.user_id,
                    constraint_set.name,
                    constraint_set.description,
                    json.dumps(constraint_set.applies_to.to_dict()),
                    constraint_set.priority,
                    constraint_set.created_at.isoformat(),
                    now,
                ),
            )

            # Replace the constraint rows wholesale so removed constraints disappear
            cursor.execute("DELETE FROM orb_constraints WHERE set_id = ?", (constraint_set.id,))
            placeholders = ", ".join("?" for _ in CONSTRAINT_COLUMNS)
            cursor.executemany(
                f"INSERT INTO orb_constraints ({', '.join(CONSTRAINT_COLUMNS)}) VALUES ({placeholders})",
                [
                    self._constraint_row(c, constraint_set.id, i)
                    for i, c in enumerate(constraint_set.constraints)
                ],
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug(f"Saved constraint set {constraint_set.id} ({len(constraint_set.constraints)} constraints)")

    def get_constraint(self, constraint_id: str) -> Constraint | None:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT c.* FROM orb_constraints c
                JOIN orb_constraint_sets s ON s.id = c.set_id
                WHERE c.id = ?
                ORDER BY s.priority DESC, s.id ASC
                LIMIT 1
            """,
                (constraint_id,),
            )
            row = cursor.fetchone()
            return self._row_to_constraint(row) if row else None
        finally:
            conn.close()

    def update_constraint(self, constraint: Constraint) -> None:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT c.set_id, c.position FROM orb_constraints c
                JOIN orb_constraint_sets s ON s.id = c.set_id
                WHERE c.id = ?
                ORDER BY s.priority DESC, s.id ASC
                LIMIT 1
            """,
                (constraint.id,),
            )
            row = cursor.fetchone()
            if row is None:
                raise ConstraintNotFoundError(constraint.id)

            constraint.updated_at = datetime.now()
            values = self._constraint_row(constraint, row["set_id"], row["position"])
            assignments = ", ".join(f"{c} = ?" for c in CONSTRAINT_COLUMNS)
            cursor.execute(
                f"UPDATE orb_constraints SET {assignments} WHERE set_id = ? AND id = ?",
                (*values, row["set_id"], constraint.id),
            )
            cursor.execute(
                "UPDATE orb_constraint_sets SET updated_at = ? WHERE id = ?",
                (constraint.updated_at.isoformat(), row["set_id"]),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_constraint_set(self, set_id: str) -> None:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM orb_constraints WHERE set_id = ?", (set_id,))
            cursor.execute("DELETE FROM orb_constraint_sets WHERE id = ?", (set_id,))
            deleted = cursor.rowcount
            conn.commit()
        finally:
            conn.close()

        if deleted:
            logger.info(f"Deleted constraint set {set_id}")


__all__ = ["SqliteConstraintStore"]
