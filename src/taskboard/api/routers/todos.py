from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import RequestContext, get_request_context
from ..hydration import filter_by_tag, hydrate_todos
from ..models import HydratedTodo, Priority, TodoEntity
from ..repositories import ListQuery
from ..schemas import ErrorOut, SuccessOut, TodoCreate, TodoOut, TodoUpdate
from ..settings import Settings, get_settings
from ..tags import replace_todo_tags

router = APIRouter(
    prefix="/api/todos",
    tags=["todos"],
    responses={
        400: {"model": ErrorOut, "description": "Bad request"},
        401: {"model": ErrorOut, "description": "Unauthorized"},
    },
)


def _hydrate_one(ctx: RequestContext, todo: TodoEntity) -> HydratedTodo:
    return hydrate_todos(ctx.store, [todo])[0]


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[TodoOut],
    summary="List Todos",
    description=(
        "List the authenticated user's todos, newest first, each with its tags and subtasks.\n\n"
        "Query parameters:\n"
        "- search: case-insensitive substring match on title\n"
        "- status: all (default), pending or completed\n"
        "- priority: low, medium or high\n"
        "- tag: only todos carrying this tag (case-insensitive)"
    ),
)
def list_todos(
    search: Optional[str] = Query(None, description="Search text for title"),
    status_: Literal["all", "pending", "completed"] = Query("all", alias="status", description="Completion filter"),
    priority: Optional[Priority] = Query(None, description="Priority filter"),
    tag: Optional[str] = Query(None, description="Tag name filter"),
    ctx: RequestContext = Depends(get_request_context),
) -> List[HydratedTodo]:
    """
    List todos. Status/priority/search filter at the store; tag filters after hydration.
    """
    query = ListQuery(
        search=search.strip() if search and search.strip() else None,
        status=status_,
        priority=priority,
    )
    todos = ctx.store.select_todos(ctx.user_id, query)
    return filter_by_tag(hydrate_todos(ctx.store, todos), tag)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new todo (optionally with tags) and return it hydrated.",
)
def create_todo(
    payload: TodoCreate,
    ctx: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_settings),
) -> HydratedTodo:
    """
    Create a todo. The row and its tag links are written in one transaction.
    """
    with ctx.store.transaction():
        created = ctx.store.insert_todo(ctx.user_id, payload.title, payload.due_at, payload.priority)
        if payload.tags:
            replace_todo_tags(
                ctx.store, ctx.user_id, created["id"], payload.tags, retries=settings.tag_upsert_retries
            )
    return _hydrate_one(ctx, created)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    responses={404: {"model": ErrorOut, "description": "Todo not found"}},
)
def get_todo(todo_id: str, ctx: RequestContext = Depends(get_request_context)) -> HydratedTodo:
    """
    Retrieve a single hydrated todo by its ID.
    """
    item = ctx.store.get_todo(ctx.user_id, todo_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    return _hydrate_one(ctx, item)


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description=(
        "Partially update a todo. `tags`, when present, replaces the complete tag set. "
        "An empty body is rejected."
    ),
    responses={404: {"model": ErrorOut, "description": "Todo not found"}},
)
def patch_todo(
    todo_id: str,
    payload: TodoUpdate,
    ctx: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_settings),
) -> HydratedTodo:
    """
    Partial update of a todo. A tags-only patch leaves the todo row untouched.
    """
    fields = payload.model_dump(exclude_unset=True, exclude={"tags"})
    tags_given = "tags" in payload.model_fields_set
    if not fields and not tags_given:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one field is required")

    with ctx.store.transaction():
        if fields:
            todo = ctx.store.update_todo(ctx.user_id, todo_id, fields)
        else:
            todo = ctx.store.get_todo(ctx.user_id, todo_id)
        if todo is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")

        if tags_given:
            replace_todo_tags(ctx.store, ctx.user_id, todo["id"], payload.tags, retries=settings.tag_upsert_retries)

    return _hydrate_one(ctx, todo)


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    response_model=SuccessOut,
    summary="Delete Todo",
    description="Delete a todo with its subtasks and tag links. Deleting a missing todo also succeeds.",
)
def delete_todo(todo_id: str, ctx: RequestContext = Depends(get_request_context)) -> dict:
    """
    Delete a todo. Returns {"success": true}.
    """
    ctx.store.delete_todo(ctx.user_id, todo_id)
    return {"success": True}
