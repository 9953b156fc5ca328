from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import ConstraintViolation
from .models import Priority, SubtaskEntity, TagEntity, TodoEntity
from .settings import get_settings
from .utils import new_id, now_utc

TODO_COLUMNS = frozenset({"title", "is_completed", "due_at", "priority"})
SUBTASK_COLUMNS = frozenset({"title", "is_done"})


@dataclass(frozen=True)
class ListQuery:
    """
    Store-level filters for listing todos. Tag filtering is not here: tag
    membership is only known after hydration.
    """
    search: Optional[str] = None
    status: str = "all"  # allowed: all, pending, completed
    priority: Optional[Priority] = None


# PUBLIC_INTERFACE
class Store(ABC):
    """
    Relational query API over the todos, tags, todo_tags and subtasks relations.

    Todo and subtask reads/writes are scoped to an owner; a row owned by someone
    else behaves exactly like a missing row. Link operations take todo ids that
    the caller has already resolved for its owner.
    """

    # todos

    @abstractmethod
    def insert_todo(
        self, user_id: str, title: str, due_at: Optional[datetime], priority: Priority
    ) -> TodoEntity:
        """Insert and return a new todo row."""

    @abstractmethod
    def get_todo(self, user_id: str, todo_id: str) -> Optional[TodoEntity]:
        """Return a todo row by id, or None if not found for this owner."""

    @abstractmethod
    def select_todos(self, user_id: str, query: Optional[ListQuery] = None) -> List[TodoEntity]:
        """
        Return the owner's todos matching the query, newest first.
        - search: case-insensitive substring on title
        - status: pending/completed filter on is_completed
        - priority: equality
        """

    @abstractmethod
    def update_todo(self, user_id: str, todo_id: str, fields: Mapping[str, Any]) -> Optional[TodoEntity]:
        """Update the given columns and bump updated_at. Return the row or None if not found."""

    @abstractmethod
    def delete_todo(self, user_id: str, todo_id: str) -> bool:
        """Delete a todo with its links and subtasks. Return True if a row was deleted."""

    # tags

    @abstractmethod
    def select_tags(self, user_id: str, names: Sequence[str]) -> List[TagEntity]:
        """Return the owner's tags whose name is in `names`."""

    @abstractmethod
    def insert_tags(self, user_id: str, names: Sequence[str]) -> List[TagEntity]:
        """
        Insert one tag per name for the owner. All-or-nothing.

        Raises:
            ConstraintViolation if any (user_id, name) pair already exists.
        """

    # todo_tags

    @abstractmethod
    def delete_todo_tags(self, todo_id: str) -> int:
        """Delete every link of a todo. Return the number of links removed."""

    @abstractmethod
    def insert_todo_tags(self, todo_id: str, tag_ids: Sequence[str]) -> None:
        """
        Insert links (todo_id, tag_id).

        Raises:
            ConstraintViolation on a duplicate link or an unknown todo/tag id.
        """

    @abstractmethod
    def select_todo_tags(self, todo_ids: Sequence[str]) -> List[Tuple[str, Optional[TagEntity]]]:
        """Return (todo_id, tag) pairs for all links of the given todos in one query."""

    # subtasks

    @abstractmethod
    def select_subtasks(self, todo_ids: Sequence[str]) -> List[SubtaskEntity]:
        """Return all subtasks of the given todos in one query, oldest first."""

    @abstractmethod
    def insert_subtask(self, user_id: str, todo_id: str, title: str) -> SubtaskEntity:
        """Insert a subtask under a todo. Raises ConstraintViolation if the todo does not exist."""

    @abstractmethod
    def update_subtask(self, user_id: str, subtask_id: str, fields: Mapping[str, Any]) -> Optional[SubtaskEntity]:
        """Update a subtask. Return the row or None if not found for this owner."""

    @abstractmethod
    def delete_subtask(self, user_id: str, subtask_id: str) -> bool:
        """Delete a subtask. Return True if a row was deleted."""

    @abstractmethod
    def transaction(self) -> Any:
        """
        Context manager grouping writes atomically: when the block raises, every
        write made inside it is rolled back.
        """


class InMemoryStore(Store):
    """
    Thread-safe in-memory store suitable for testing and default runtime.

    Mirrors the relational constraints of the sqlite schema: unique
    (user_id, name) on tags, a composite key on links, and cascading deletes
    from todos to links and subtasks.

    transaction() keeps an undo log of the rows it changes instead of copying
    the tables. The link list is never mutated in place, so remembering the
    previous list object is enough to restore it.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._todos: Dict[str, TodoEntity] = {}
        self._tags: Dict[str, Dict[str, str]] = {}  # id -> {id, user_id, name}
        self._links: List[Tuple[str, str]] = []
        self._subtasks: Dict[str, SubtaskEntity] = {}
        self._seq: Dict[str, int] = {}
        self._next_seq = 1
        self._undo: Optional[List[Callable[[], None]]] = None

    def _remember(self, table: Dict[str, Any], key: str) -> None:
        if self._undo is None:
            return
        if key in table:
            previous = table[key]
            self._undo.append(lambda: table.__setitem__(key, previous))
        else:
            self._undo.append(lambda: table.pop(key, None))

    def _remember_links(self) -> None:
        if self._undo is None:
            return
        previous = self._links
        self._undo.append(lambda: setattr(self, "_links", previous))

    def _stamp(self, row_id: str) -> None:
        self._remember(self._seq, row_id)
        self._seq[row_id] = self._next_seq
        self._next_seq += 1

    # todos

    def insert_todo(
        self, user_id: str, title: str, due_at: Optional[datetime], priority: Priority
    ) -> TodoEntity:
        now = now_utc()
        entity: TodoEntity = {
            "id": new_id(),
            "user_id": user_id,
            "title": title,
            "is_completed": False,
            "due_at": due_at,
            "priority": priority,
            "inserted_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._remember(self._todos, entity["id"])
            self._todos[entity["id"]] = entity
            self._stamp(entity["id"])
            return entity.copy()

    def get_todo(self, user_id: str, todo_id: str) -> Optional[TodoEntity]:
        with self._lock:
            item = self._todos.get(todo_id)
            if item is None or item["user_id"] != user_id:
                return None
            return item.copy()

    def select_todos(self, user_id: str, query: Optional[ListQuery] = None) -> List[TodoEntity]:
        q = query or ListQuery()
        with self._lock:
            items: Iterable[TodoEntity] = [t for t in self._todos.values() if t["user_id"] == user_id]

            if q.search:
                s = q.search.lower()
                items = [t for t in items if s in t["title"].lower()]

            if q.status == "pending":
                items = [t for t in items if not t["is_completed"]]
            elif q.status == "completed":
                items = [t for t in items if t["is_completed"]]

            if q.priority:
                items = [t for t in items if t["priority"] == q.priority]

            ordered = sorted(items, key=lambda t: (t["inserted_at"], self._seq[t["id"]]), reverse=True)
            return [t.copy() for t in ordered]

    def update_todo(self, user_id: str, todo_id: str, fields: Mapping[str, Any]) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._todos.get(todo_id)
            if existing is None or existing["user_id"] != user_id:
                return None

            updated = existing.copy()
            for key, value in fields.items():
                if key in TODO_COLUMNS:
                    updated[key] = value  # type: ignore[literal-required]
            updated["updated_at"] = now_utc()

            self._remember(self._todos, todo_id)
            self._todos[todo_id] = updated
            return updated.copy()

    def delete_todo(self, user_id: str, todo_id: str) -> bool:
        with self._lock:
            existing = self._todos.get(todo_id)
            if existing is None or existing["user_id"] != user_id:
                return False
            self._remember(self._todos, todo_id)
            del self._todos[todo_id]
            self._remember_links()
            self._links = [link for link in self._links if link[0] != todo_id]
            for sid in [s["id"] for s in self._subtasks.values() if s["todo_id"] == todo_id]:
                self._remember(self._subtasks, sid)
                del self._subtasks[sid]
            return True

    # tags

    def select_tags(self, user_id: str, names: Sequence[str]) -> List[TagEntity]:
        wanted = set(names)
        with self._lock:
            rows = [t for t in self._tags.values() if t["user_id"] == user_id and t["name"] in wanted]
            rows.sort(key=lambda t: self._seq[t["id"]])
            return [{"id": t["id"], "name": t["name"]} for t in rows]

    def insert_tags(self, user_id: str, names: Sequence[str]) -> List[TagEntity]:
        with self._lock:
            taken = {t["name"] for t in self._tags.values() if t["user_id"] == user_id}
            batch: set[str] = set()
            for name in names:
                if name in taken or name in batch:
                    raise ConstraintViolation(
                        f'duplicate key value violates unique constraint "tags_user_id_name_key" ({name})'
                    )
                batch.add(name)

            created: List[TagEntity] = []
            for name in names:
                tag_id = new_id()
                self._remember(self._tags, tag_id)
                self._tags[tag_id] = {"id": tag_id, "user_id": user_id, "name": name}
                self._stamp(tag_id)
                created.append({"id": tag_id, "name": name})
            return created

    # todo_tags

    def delete_todo_tags(self, todo_id: str) -> int:
        with self._lock:
            before = len(self._links)
            self._remember_links()
            self._links = [link for link in self._links if link[0] != todo_id]
            return before - len(self._links)

    def insert_todo_tags(self, todo_id: str, tag_ids: Sequence[str]) -> None:
        with self._lock:
            if todo_id not in self._todos:
                raise ConstraintViolation(f"todo {todo_id} does not exist")
            existing = set(self._links)
            pending: List[Tuple[str, str]] = []
            for tag_id in tag_ids:
                link = (todo_id, tag_id)
                if tag_id not in self._tags:
                    raise ConstraintViolation(f"tag {tag_id} does not exist")
                if link in existing or link in pending:
                    raise ConstraintViolation(
                        f'duplicate key value violates unique constraint "todo_tags_pkey" ({todo_id}, {tag_id})'
                    )
                pending.append(link)
            self._remember_links()
            self._links = self._links + pending

    def select_todo_tags(self, todo_ids: Sequence[str]) -> List[Tuple[str, Optional[TagEntity]]]:
        wanted = set(todo_ids)
        with self._lock:
            rows: List[Tuple[str, Optional[TagEntity]]] = []
            for todo_id, tag_id in self._links:
                if todo_id not in wanted:
                    continue
                tag = self._tags.get(tag_id)
                rows.append((todo_id, {"id": tag["id"], "name": tag["name"]} if tag else None))
            return rows

    # subtasks

    def select_subtasks(self, todo_ids: Sequence[str]) -> List[SubtaskEntity]:
        wanted = set(todo_ids)
        with self._lock:
            rows = [s for s in self._subtasks.values() if s["todo_id"] in wanted]
            rows.sort(key=lambda s: (s["inserted_at"], self._seq[s["id"]]))
            return [s.copy() for s in rows]

    def insert_subtask(self, user_id: str, todo_id: str, title: str) -> SubtaskEntity:
        now = now_utc()
        entity: SubtaskEntity = {
            "id": new_id(),
            "todo_id": todo_id,
            "user_id": user_id,
            "title": title,
            "is_done": False,
            "inserted_at": now,
            "updated_at": now,
        }
        with self._lock:
            if todo_id not in self._todos:
                raise ConstraintViolation(f"todo {todo_id} does not exist")
            self._remember(self._subtasks, entity["id"])
            self._subtasks[entity["id"]] = entity
            self._stamp(entity["id"])
            return entity.copy()

    def update_subtask(self, user_id: str, subtask_id: str, fields: Mapping[str, Any]) -> Optional[SubtaskEntity]:
        with self._lock:
            existing = self._subtasks.get(subtask_id)
            if existing is None or existing["user_id"] != user_id:
                return None
            updated = existing.copy()
            for key, value in fields.items():
                if key in SUBTASK_COLUMNS:
                    updated[key] = value  # type: ignore[literal-required]
            updated["updated_at"] = now_utc()
            self._remember(self._subtasks, subtask_id)
            self._subtasks[subtask_id] = updated
            return updated.copy()

    def delete_subtask(self, user_id: str, subtask_id: str) -> bool:
        with self._lock:
            existing = self._subtasks.get(subtask_id)
            if existing is None or existing["user_id"] != user_id:
                return False
            self._remember(self._subtasks, subtask_id)
            del self._subtasks[subtask_id]
            return True

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._undo is not None:
                # Nested: the outer block owns the undo log
                yield
                return

            self._undo = []
            try:
                yield
            except BaseException:
                for undo in reversed(self._undo):
                    undo()
                raise
            finally:
                self._undo = None


@lru_cache(maxsize=1)
def _store_singleton() -> Store:
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteStore

        return SQLiteStore(settings.sqlite_db_path)
    return InMemoryStore()


# PUBLIC_INTERFACE
def get_store() -> Store:
    """
    Return the process-wide store configured by settings.
    - memory: InMemoryStore
    - sqlite: SQLiteStore
    """
    return _store_singleton()


def reset_store() -> None:
    """Drop the cached store so the next get_store() re-reads settings."""
    _store_singleton.cache_clear()
