from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from ..tagnames import normalize_tag_name
from .models import HydratedTodo, SubtaskEntity, TagEntity, TodoEntity
from .repositories import Store


# PUBLIC_INTERFACE
def hydrate_todos(store: Store, todos: Sequence[TodoEntity]) -> List[HydratedTodo]:
    """
    Attach `tags` and `subtasks` to each todo of an already filtered/sorted batch.

    Issues exactly two store queries (links with tag payload, then subtasks)
    whatever the batch size, and none for an empty batch. Input order is kept;
    subtasks keep creation order. Both arrays are always present.
    """
    ids = [t["id"] for t in todos]
    if not ids:
        return []

    tags_by_todo: Dict[str, List[TagEntity]] = defaultdict(list)
    for todo_id, tag in store.select_todo_tags(ids):
        if tag is None:
            continue
        tags_by_todo[todo_id].append(tag)

    subtasks_by_todo: Dict[str, List[SubtaskEntity]] = defaultdict(list)
    for subtask in store.select_subtasks(ids):
        subtasks_by_todo[subtask["todo_id"]].append(subtask)

    hydrated: List[HydratedTodo] = []
    for todo in todos:
        item: HydratedTodo = {  # type: ignore[typeddict-item]
            **todo,
            "tags": list(tags_by_todo.get(todo["id"], [])),
            "subtasks": list(subtasks_by_todo.get(todo["id"], [])),
        }
        hydrated.append(item)
    return hydrated


# PUBLIC_INTERFACE
def filter_by_tag(todos: Sequence[HydratedTodo], tag: Optional[str]) -> List[HydratedTodo]:
    """
    Keep the todos carrying a tag equal (case-insensitively) to `tag`.

    Runs after hydration since tag membership is only known post-join. A blank
    filter keeps everything.
    """
    wanted = normalize_tag_name(tag)
    if wanted is None:
        return list(todos)
    return [t for t in todos if any(tg["name"].lower() == wanted for tg in t["tags"])]
