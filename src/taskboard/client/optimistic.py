"""
Optimistic mutations over the shared todo-list cache.

Every mutation follows the same protocol:

    idle -> optimistic_applied -> settled_success | settled_error -> reconciled

1. cancel in-flight todo-list reads so a stale response cannot overwrite the edit
2. capture the active list as the previous snapshot
3. apply the speculative edit synchronously
4. issue the single API call
5. on failure restore the snapshot exactly (no merge, no retry)
6. in every case invalidate all todo lists so server truth replaces the edit

Two concurrent mutations each snapshot whatever the cache held when they
started, so rolling one back can also undo the other's speculative edit until
the refetch lands. Their combined outcome on a single todo is undefined.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..tagnames import normalize_tag_names
from .api import ApiError, TodoApi, TodoFilters
from .cache import MISSING, TODOS, QueryCache, QueryKey, todos_key

logger = logging.getLogger(__name__)

Todo = Dict[str, Any]
TodoList = Optional[List[Todo]]

TEMP_ID_PREFIX = "temp-"

# Board column id -> completion flag a todo dropped there takes
COLUMN_COMPLETION = {"pending": False, "completed": True}


class MutationState(str, Enum):
    IDLE = "idle"
    OPTIMISTIC_APPLIED = "optimistic_applied"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_ERROR = "settled_error"
    RECONCILED = "reconciled"


# PUBLIC_INTERFACE
@dataclass
class MutationRecord:
    """
    Lifecycle of one optimistic mutation.

    previous_snapshot holds the list captured at start (MISSING if the key had
    no entry) until the mutation succeeds, at which point it is discarded.
    """

    kind: str
    key: QueryKey
    state: MutationState = MutationState.IDLE
    previous_snapshot: Any = MISSING
    data: Any = None
    error: Optional[str] = None
    history: List[MutationState] = field(default_factory=lambda: [MutationState.IDLE])

    def advance(self, state: MutationState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def ok(self) -> bool:
        return self.error is None and MutationState.SETTLED_SUCCESS in self.history


def temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(value: object) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def placeholder_tags(names: Optional[Iterable[object]]) -> List[Dict[str, str]]:
    return [{"id": temp_id(), "name": n} for n in normalize_tag_names(names)]


# PUBLIC_INTERFACE
def make_placeholder_todo(
    title: str,
    due_at: Any = None,
    priority: Optional[str] = None,
    tags: Optional[Iterable[object]] = None,
) -> Todo:
    """The entry shown for a todo between create and the refetch that replaces it."""
    now = _now_iso()
    return {
        "id": temp_id(),
        "user_id": None,
        "title": title.strip(),
        "is_completed": False,
        "due_at": _iso(due_at),
        "priority": priority or "medium",
        "inserted_at": now,
        "updated_at": now,
        "tags": placeholder_tags(tags),
        "subtasks": [],
    }


def make_placeholder_subtask(todo_id: str, title: str) -> Dict[str, Any]:
    now = _now_iso()
    return {
        "id": temp_id(),
        "todo_id": todo_id,
        "user_id": None,
        "title": title.strip(),
        "is_done": False,
        "inserted_at": now,
        "updated_at": now,
    }


# Pure edits: each returns a new list and never mutates its input.


def prepend_todo(todos: TodoList, todo: Todo) -> List[Todo]:
    return [todo, *(todos or [])]


def patch_todo(todos: TodoList, todo_id: str, changes: Dict[str, Any]) -> TodoList:
    if todos is None:
        return None
    return [{**t, **changes} if t.get("id") == todo_id else t for t in todos]


def remove_todo(todos: TodoList, todo_id: str) -> TodoList:
    if todos is None:
        return None
    return [t for t in todos if t.get("id") != todo_id]


def map_todo(todos: TodoList, todo_id: str, fn: Callable[[Todo], Todo]) -> TodoList:
    if todos is None:
        return None
    return [fn(t) if t.get("id") == todo_id else t for t in todos]


def _cache_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """API patch fields as they should appear in a cached todo."""
    out: Dict[str, Any] = {}
    for name, value in changes.items():
        if name == "tags":
            out["tags"] = placeholder_tags(value)
        else:
            out[name] = _iso(value)
    return out


# PUBLIC_INTERFACE
class OptimisticTodoController:
    """
    Owns what the UI currently believes the todo list is.

    Args:
        api: the mutation executor
        cache: the session's query cache (injected, shared with readers)
        filters: filters of the list the UI is showing
    """

    def __init__(self, api: TodoApi, cache: QueryCache, filters: Optional[TodoFilters] = None) -> None:
        self.api = api
        self.cache = cache
        self.key = todos_key(filters)
        self.last_error: Optional[str] = None

    @property
    def todos(self) -> List[Todo]:
        return self.cache.get(self.key) or []

    def find(self, todo_id: str) -> Optional[Todo]:
        for todo in self.todos:
            if todo.get("id") == todo_id:
                return todo
        return None

    async def load(self, filters: Optional[TodoFilters] = None) -> List[Todo]:
        """
        Make `filters` the active list (if given) and read it through the cache.
        The list previously shown is released so mutations stop refetching it.
        """
        if filters is not None:
            key = todos_key(filters)
            if key != self.key:
                self.cache.release(self.key)
                self.key = key
        key_filters = self.key.filters

        async def fetch_list() -> List[Todo]:
            return await self.api.list_todos(key_filters)

        return await self.cache.fetch(self.key, fetch_list)

    async def _mutate(
        self,
        kind: str,
        edit: Callable[[TodoList], TodoList],
        call: Callable[[], Awaitable[Any]],
    ) -> MutationRecord:
        key = self.key
        record = MutationRecord(kind=kind, key=key)
        self.last_error = None

        await self.cache.cancel(TODOS)
        record.previous_snapshot = self.cache.get(key, MISSING)
        current = None if record.previous_snapshot is MISSING else record.previous_snapshot
        edited = edit(current)
        if edited is not None:
            self.cache.set(key, edited)
        record.advance(MutationState.OPTIMISTIC_APPLIED)

        try:
            try:
                record.data = await call()
            except ApiError as e:
                self._restore(key, record.previous_snapshot)
                record.error = e.message
                self.last_error = e.message
                record.advance(MutationState.SETTLED_ERROR)
                logger.info("%s rolled back: %s", kind, e.message)
            except BaseException:
                self._restore(key, record.previous_snapshot)
                raise
            else:
                record.previous_snapshot = None
                record.advance(MutationState.SETTLED_SUCCESS)
        finally:
            await self.cache.invalidate(TODOS)
            record.advance(MutationState.RECONCILED)
        return record

    def _restore(self, key: QueryKey, snapshot: Any) -> None:
        if snapshot is MISSING:
            self.cache.remove(key)
        else:
            self.cache.set(key, snapshot)

    # todos

    async def create(
        self,
        title: str,
        due_at: Any = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> MutationRecord:
        placeholder = make_placeholder_todo(title, due_at, priority, tags)
        return await self._mutate(
            "create",
            lambda todos: prepend_todo(todos, placeholder),
            lambda: self.api.create_todo(title, due_at=due_at, priority=priority, tags=tags),
        )

    async def update(self, todo_id: str, **changes: Any) -> MutationRecord:
        cached = _cache_changes(changes)
        return await self._mutate(
            "update",
            lambda todos: patch_todo(todos, todo_id, cached),
            lambda: self.api.update_todo(todo_id, **changes),
        )

    async def toggle(self, todo_id: str, is_completed: bool) -> MutationRecord:
        return await self.update(todo_id, is_completed=is_completed)

    async def delete(self, todo_id: str) -> MutationRecord:
        return await self._mutate(
            "delete",
            lambda todos: remove_todo(todos, todo_id),
            lambda: self.api.delete_todo(todo_id),
        )

    async def move_to_column(self, todo_id: str, column_id: str) -> Optional[MutationRecord]:
        """
        Handle a board drop. Returns None without issuing anything when the
        drop does not change the completion flag.
        """
        if column_id not in COLUMN_COMPLETION:
            raise ValueError(f"unknown column {column_id!r}")
        target = COLUMN_COMPLETION[column_id]
        todo = self.find(todo_id)
        if todo is None or bool(todo.get("is_completed")) == target:
            return None
        return await self.toggle(todo_id, target)

    # subtasks

    async def add_subtask(self, todo_id: str, title: str) -> MutationRecord:
        placeholder = make_placeholder_subtask(todo_id, title)

        def edit(todos: TodoList) -> TodoList:
            return map_todo(todos, todo_id, lambda t: {**t, "subtasks": [*t.get("subtasks", []), placeholder]})

        return await self._mutate("add_subtask", edit, lambda: self.api.create_subtask(todo_id, title))

    async def set_subtask_done(self, todo_id: str, subtask_id: str, is_done: bool) -> MutationRecord:
        def edit(todos: TodoList) -> TodoList:
            return map_todo(
                todos,
                todo_id,
                lambda t: {
                    **t,
                    "subtasks": [
                        {**s, "is_done": is_done} if s.get("id") == subtask_id else s for s in t.get("subtasks", [])
                    ],
                },
            )

        return await self._mutate(
            "set_subtask_done", edit, lambda: self.api.update_subtask(subtask_id, is_done=is_done)
        )

    async def remove_subtask(self, todo_id: str, subtask_id: str) -> MutationRecord:
        def edit(todos: TodoList) -> TodoList:
            return map_todo(
                todos,
                todo_id,
                lambda t: {**t, "subtasks": [s for s in t.get("subtasks", []) if s.get("id") != subtask_id]},
            )

        return await self._mutate("remove_subtask", edit, lambda: self.api.delete_subtask(subtask_id))

    # ai: suggestions are plain reads; only the apply step is optimistic

    async def parse_text(self, text: str) -> Dict[str, Any]:
        return await self.api.ai_parse(text)

    async def suggest_rewrite(self, title: str) -> str:
        return (await self.api.ai_rewrite(title))["title"]

    async def suggest_tags(self, title: str) -> List[str]:
        return list((await self.api.ai_tag(title))["tags"])

    async def suggest_subtasks(self, title: str) -> List[str]:
        return list((await self.api.ai_subtasks(title))["subtasks"])

    async def apply_rewrite(self, todo_id: str, title: str) -> MutationRecord:
        return await self.update(todo_id, title=title)

    async def apply_tags(self, todo_id: str, tags: List[str]) -> MutationRecord:
        return await self.update(todo_id, tags=tags)

    async def apply_subtasks(self, todo_id: str, titles: Iterable[str]) -> List[MutationRecord]:
        return [await self.add_subtask(todo_id, title) for title in titles]

    async def smart_add(self, text: str) -> MutationRecord:
        """Parse freeform text with the AI collaborator, then create optimistically."""
        parsed = await self.parse_text(text)
        return await self.create(
            parsed["title"],
            due_at=parsed.get("due_at"),
            priority=parsed.get("priority"),
            tags=parsed.get("tags"),
        )
