from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, TypedDict

Priority = Literal["low", "medium", "high"]


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A Todo row as stored in the `todos` relation.

    Fields:
    - id: UUID string issued by the store
    - user_id: owner identifier
    - title: non-empty, trimmed title
    - is_completed: completion flag
    - due_at: optional due datetime
    - priority: 'low' | 'medium' | 'high'
    - inserted_at / updated_at: UTC timestamps
    """

    id: str
    user_id: str
    title: str
    is_completed: bool
    due_at: Optional[datetime]
    priority: Priority
    inserted_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class TagEntity(TypedDict):
    """A Tag row. `name` is always stored in normalized form."""

    id: str
    name: str


# PUBLIC_INTERFACE
class SubtaskEntity(TypedDict):
    """A Subtask row, exclusively owned by its parent todo."""

    id: str
    todo_id: str
    user_id: str
    title: str
    is_done: bool
    inserted_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class HydratedTodo(TodoEntity):
    """A TodoEntity with its tags and subtasks attached (never omitted)."""

    tags: List[TagEntity]
    subtasks: List[SubtaskEntity]
