from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import ConstraintViolation, DataAccessError
from .models import Priority, SubtaskEntity, TagEntity, TodoEntity
from .repositories import SUBTASK_COLUMNS, TODO_COLUMNS, ListQuery, Store
from .utils import new_id, now_utc

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS todos (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL CHECK (length(title) > 0),
        is_completed INTEGER NOT NULL DEFAULT 0,
        due_at TEXT NULL,
        priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
        inserted_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        UNIQUE (user_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS todo_tags (
        todo_id TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
        tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
        PRIMARY KEY (todo_id, tag_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subtasks (
        id TEXT PRIMARY KEY,
        todo_id TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL CHECK (length(title) > 0),
        is_done INTEGER NOT NULL DEFAULT 0,
        inserted_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_todos_user_inserted ON todos(user_id, inserted_at)",
    "CREATE INDEX IF NOT EXISTS idx_subtasks_todo ON subtasks(todo_id, inserted_at)",
    "CREATE INDEX IF NOT EXISTS idx_todo_tags_todo ON todo_tags(todo_id)",
)


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _fmt_dt(d: Optional[datetime]) -> Optional[str]:
    return d.isoformat() if d is not None else None


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _like_escape(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteStore(Store):
    """
    SQLite implementation of the Store contract.

    Each call opens its own connection unless a transaction() is active on the
    current thread, in which case the transaction's connection is reused.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        active: Optional[sqlite3.Connection] = getattr(self._local, "conn", None)
        if active is not None:
            with self._translate_errors():
                yield active
            return

        conn = self._connect()
        try:
            with self._translate_errors():
                yield conn
                conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(str(e)) from e
        except sqlite3.Error as e:
            logger.error("sqlite error on %s: %s", self._db_path, e)
            raise DataAccessError(str(e)) from e

    def _init_db(self) -> None:
        with self._conn() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            # Nested: join the outer transaction
            yield
            return

        conn = self._connect()
        self._local.conn = conn
        try:
            yield
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    # row mapping

    def _row_to_todo(self, row: sqlite3.Row) -> TodoEntity:
        return {
            "id": str(row["id"]),
            "user_id": str(row["user_id"]),
            "title": str(row["title"]),
            "is_completed": bool(row["is_completed"]),
            "due_at": _parse_dt(row["due_at"]),
            "priority": row["priority"],
            "inserted_at": _parse_dt(row["inserted_at"]),  # type: ignore
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore
        }

    def _row_to_subtask(self, row: sqlite3.Row) -> SubtaskEntity:
        return {
            "id": str(row["id"]),
            "todo_id": str(row["todo_id"]),
            "user_id": str(row["user_id"]),
            "title": str(row["title"]),
            "is_done": bool(row["is_done"]),
            "inserted_at": _parse_dt(row["inserted_at"]),  # type: ignore
            "updated_at": _parse_dt(row["updated_at"]),  # type: ignore
        }

    # todos

    def insert_todo(
        self, user_id: str, title: str, due_at: Optional[datetime], priority: Priority
    ) -> TodoEntity:
        now = now_utc().isoformat()
        todo_id = new_id()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO todos (id, user_id, title, is_completed, due_at, priority, inserted_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (todo_id, user_id, title, _fmt_dt(due_at), priority, now, now),
            )
            row = conn.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
            assert row is not None
            return self._row_to_todo(row)

    def get_todo(self, user_id: str, todo_id: str) -> Optional[TodoEntity]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id)
            ).fetchone()
            return self._row_to_todo(row) if row else None

    def select_todos(self, user_id: str, query: Optional[ListQuery] = None) -> List[TodoEntity]:
        q = query or ListQuery()
        clauses = ["user_id = ?"]
        params: list = [user_id]

        if q.search:
            clauses.append("lower(title) LIKE ? ESCAPE '\\'")
            params.append(f"%{_like_escape(q.search.lower())}%")

        if q.status == "pending":
            clauses.append("is_completed = 0")
        elif q.status == "completed":
            clauses.append("is_completed = 1")

        if q.priority:
            clauses.append("priority = ?")
            params.append(q.priority)

        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM todos
                WHERE {' AND '.join(clauses)}
                ORDER BY inserted_at DESC, rowid DESC
                """,
                params,
            ).fetchall()
            return [self._row_to_todo(r) for r in rows]

    def update_todo(self, user_id: str, todo_id: str, fields: Mapping[str, Any]) -> Optional[TodoEntity]:
        sets: List[str] = []
        params: list = []
        for key, value in fields.items():
            if key not in TODO_COLUMNS:
                continue
            sets.append(f"{key} = ?")
            if key == "is_completed":
                params.append(1 if value else 0)
            elif key == "due_at":
                params.append(_fmt_dt(value))
            else:
                params.append(value)
        sets.append("updated_at = ?")
        params.append(now_utc().isoformat())

        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE todos SET {', '.join(sets)} WHERE id = ? AND user_id = ?",
                [*params, todo_id, user_id],
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
            assert row is not None
            return self._row_to_todo(row)

    def delete_todo(self, user_id: str, todo_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id))
            return cur.rowcount > 0

    # tags

    def select_tags(self, user_id: str, names: Sequence[str]) -> List[TagEntity]:
        if not names:
            return []
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT id, name FROM tags
                WHERE user_id = ? AND name IN ({_placeholders(names)})
                ORDER BY rowid
                """,
                [user_id, *names],
            ).fetchall()
            return [{"id": str(r["id"]), "name": str(r["name"])} for r in rows]

    def insert_tags(self, user_id: str, names: Sequence[str]) -> List[TagEntity]:
        created: List[TagEntity] = [{"id": new_id(), "name": name} for name in names]
        with self._conn() as conn:
            conn.executemany(
                "INSERT INTO tags (id, user_id, name) VALUES (?, ?, ?)",
                [(t["id"], user_id, t["name"]) for t in created],
            )
        return created

    # todo_tags

    def delete_todo_tags(self, todo_id: str) -> int:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM todo_tags WHERE todo_id = ?", (todo_id,))
            return cur.rowcount

    def insert_todo_tags(self, todo_id: str, tag_ids: Sequence[str]) -> None:
        with self._conn() as conn:
            conn.executemany(
                "INSERT INTO todo_tags (todo_id, tag_id) VALUES (?, ?)",
                [(todo_id, tag_id) for tag_id in tag_ids],
            )

    def select_todo_tags(self, todo_ids: Sequence[str]) -> List[Tuple[str, Optional[TagEntity]]]:
        if not todo_ids:
            return []
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT tt.todo_id AS todo_id, t.id AS tag_id, t.name AS tag_name
                FROM todo_tags tt
                LEFT JOIN tags t ON t.id = tt.tag_id
                WHERE tt.todo_id IN ({_placeholders(todo_ids)})
                ORDER BY tt.rowid
                """,
                list(todo_ids),
            ).fetchall()
            return [
                (
                    str(r["todo_id"]),
                    {"id": str(r["tag_id"]), "name": str(r["tag_name"])} if r["tag_id"] is not None else None,
                )
                for r in rows
            ]

    # subtasks

    def select_subtasks(self, todo_ids: Sequence[str]) -> List[SubtaskEntity]:
        if not todo_ids:
            return []
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM subtasks
                WHERE todo_id IN ({_placeholders(todo_ids)})
                ORDER BY inserted_at ASC, rowid ASC
                """,
                list(todo_ids),
            ).fetchall()
            return [self._row_to_subtask(r) for r in rows]

    def insert_subtask(self, user_id: str, todo_id: str, title: str) -> SubtaskEntity:
        now = now_utc().isoformat()
        subtask_id = new_id()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO subtasks (id, todo_id, user_id, title, is_done, inserted_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (subtask_id, todo_id, user_id, title, now, now),
            )
            row = conn.execute("SELECT * FROM subtasks WHERE id = ?", (subtask_id,)).fetchone()
            assert row is not None
            return self._row_to_subtask(row)

    def update_subtask(self, user_id: str, subtask_id: str, fields: Mapping[str, Any]) -> Optional[SubtaskEntity]:
        sets: List[str] = []
        params: list = []
        for key, value in fields.items():
            if key not in SUBTASK_COLUMNS:
                continue
            sets.append(f"{key} = ?")
            params.append((1 if value else 0) if key == "is_done" else value)
        sets.append("updated_at = ?")
        params.append(now_utc().isoformat())

        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE subtasks SET {', '.join(sets)} WHERE id = ? AND user_id = ?",
                [*params, subtask_id, user_id],
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM subtasks WHERE id = ?", (subtask_id,)).fetchone()
            assert row is not None
            return self._row_to_subtask(row)

    def delete_subtask(self, user_id: str, subtask_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM subtasks WHERE id = ? AND user_id = ?", (subtask_id, user_id))
            return cur.rowcount > 0
