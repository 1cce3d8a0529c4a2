from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, List, Optional, Tuple

from .models import CollectionEntity, OrganizationEntity, ReminderEntity
from .repositories import ListQuery, OwnershipError, Repository, new_id, normalize_sort
from .schemas import CollectionCreate, OrganizationCreate, ReminderCreate

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS collections (
        id TEXT PRIMARY KEY,
        organization_id TEXT NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id TEXT PRIMARY KEY,
        collection_id TEXT NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT NULL,
        due_date TEXT NULL,
        is_completed INTEGER NOT NULL DEFAULT 0,
        created_by TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_collections_organization_id ON collections(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_collection_id ON reminders(collection_id)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_is_completed ON reminders(is_completed)",
    "CREATE INDEX IF NOT EXISTS idx_reminders_created_at ON reminders(created_at)",
)


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return datetime.fromisoformat(s)


class SQLiteRepository(Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def _row_to_organization(self, row: sqlite3.Row) -> OrganizationEntity:
        return {
            "id": str(row["id"]),
            "name": str(row["name"]),
            "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
        }

    def _row_to_collection(self, row: sqlite3.Row) -> CollectionEntity:
        return {
            "id": str(row["id"]),
            "organization_id": str(row["organization_id"]),
            "name": str(row["name"]),
            "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
        }

    def _row_to_reminder(self, row: sqlite3.Row) -> ReminderEntity:
        return {
            "id": str(row["id"]),
            "collection_id": str(row["collection_id"]),
            "title": str(row["title"]),
            "description": row["description"],
            "due_date": _parse_dt(row["due_date"]),
            "is_completed": bool(row["is_completed"]),
            "created_by": row["created_by"],
            "created_at": _parse_dt(row["created_at"]),  # type: ignore[typeddict-item]
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore[typeddict-item]
        }

    def create_organization(self, data: OrganizationCreate) -> OrganizationEntity:
        org_id = new_id()
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO organizations (id, name, created_at) VALUES (?, ?, ?)",
                (org_id, data.name, datetime.now().isoformat()),
            )
            row = conn.execute("SELECT * FROM organizations WHERE id = ?", (org_id,)).fetchone()
            assert row is not None
            return self._row_to_organization(row)

    def get_organization(self, org_id: str) -> Optional[OrganizationEntity]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM organizations WHERE id = ?", (org_id,)).fetchone()
            return self._row_to_organization(row) if row else None

    def create_collection(self, org_id: str, data: CollectionCreate) -> Optional[CollectionEntity]:
        coll_id = new_id()
        with self._conn() as conn:
            if conn.execute("SELECT 1 FROM organizations WHERE id = ?", (org_id,)).fetchone() is None:
                return None
            conn.execute(
                "INSERT INTO collections (id, organization_id, name, created_at) VALUES (?, ?, ?, ?)",
                (coll_id, org_id, data.name, datetime.now().isoformat()),
            )
            row = conn.execute("SELECT * FROM collections WHERE id = ?", (coll_id,)).fetchone()
            assert row is not None
            return self._row_to_collection(row)

    def list_collections(self, org_id: str) -> List[CollectionEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM collections WHERE organization_id = ? ORDER BY created_at ASC, rowid ASC",
                (org_id,),
            ).fetchall()
            return [self._row_to_collection(r) for r in rows]

    def create_reminder(self, data: ReminderCreate) -> Optional[ReminderEntity]:
        reminder_id = new_id()
        now = datetime.now().isoformat()
        due = data.due_date.isoformat() if data.due_date else None
        with self._conn() as conn:
            if conn.execute("SELECT 1 FROM collections WHERE id = ?", (data.collection_id,)).fetchone() is None:
                return None
            conn.execute(
                """
                INSERT INTO reminders (id, collection_id, title, description, due_date,
                    is_completed, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reminder_id,
                    data.collection_id,
                    data.title,
                    data.description,
                    due,
                    1 if data.is_completed else 0,
                    data.created_by,
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
            assert row is not None
            return self._row_to_reminder(row)

    def get_reminder(self, reminder_id: str) -> Optional[ReminderEntity]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
            return self._row_to_reminder(row) if row else None

    def delete_reminder(self, reminder_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
            return cur.rowcount > 0

    def list_reminders(self, query: Optional[ListQuery] = None) -> Tuple[List[ReminderEntity], int]:
        q = query or ListQuery()
        clauses = []
        params: list = []

        if q.collection_id is not None:
            clauses.append("collection_id = ?")
            params.append(q.collection_id)
        if q.completed is not None:
            clauses.append("is_completed = ?")
            params.append(1 if q.completed else 0)
        if q.created_by is not None:
            clauses.append("created_by = ?")
            params.append(q.created_by)
        if q.search:
            # LIKE is case-insensitive for ASCII in SQLite
            clauses.append("(title LIKE ? OR description LIKE ?)")
            like = f"%{q.search}%"
            params.extend([like, like])

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        field, reverse = normalize_sort(q.sort)
        direction = "DESC" if reverse else "ASC"
        order_sql = f"ORDER BY {field} {direction}, rowid {direction}"

        with self._conn() as conn:
            count_row = conn.execute(f"SELECT COUNT(*) AS cnt FROM reminders {where_sql}", params).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"SELECT * FROM reminders {where_sql} {order_sql} LIMIT ? OFFSET ?",
                [*params, max(q.limit, 0), max(q.offset, 0)],
            ).fetchall()
            return [self._row_to_reminder(r) for r in rows], total

    def update_status(self, reminder_id: str, created_by: str, is_completed: bool) -> Optional[ReminderEntity]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
            if not row:
                return None
            if row["created_by"] != created_by:
                raise OwnershipError(reminder_id)
            conn.execute(
                "UPDATE reminders SET is_completed = ?, updated_at = ? WHERE id = ?",
                (1 if is_completed else 0, datetime.now().isoformat(), reminder_id),
            )
            updated = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
            assert updated is not None
            return self._row_to_reminder(updated)
