from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import RequestContext, get_request_context
from ..models import SubtaskEntity
from ..schemas import ErrorOut, SubtaskCreate, SubtaskOut, SubtaskUpdate, SuccessOut

router = APIRouter(
    prefix="/api",
    tags=["subtasks"],
    responses={
        400: {"model": ErrorOut, "description": "Bad request"},
        401: {"model": ErrorOut, "description": "Unauthorized"},
        404: {"model": ErrorOut, "description": "Not found"},
    },
)


def _require_todo(ctx: RequestContext, todo_id: str) -> None:
    if ctx.store.get_todo(ctx.user_id, todo_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")


# PUBLIC_INTERFACE
@router.get("/todos/{todo_id}/subtasks", response_model=List[SubtaskOut], summary="List subtasks for a todo")
def list_subtasks(todo_id: str, ctx: RequestContext = Depends(get_request_context)) -> List[SubtaskEntity]:
    """Subtasks of one todo in creation order."""
    _require_todo(ctx, todo_id)
    return ctx.store.select_subtasks([todo_id])


# PUBLIC_INTERFACE
@router.post(
    "/todos/{todo_id}/subtasks",
    response_model=SubtaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a subtask",
)
def create_subtask(
    todo_id: str, payload: SubtaskCreate, ctx: RequestContext = Depends(get_request_context)
) -> SubtaskEntity:
    _require_todo(ctx, todo_id)
    return ctx.store.insert_subtask(ctx.user_id, todo_id, payload.title)


# PUBLIC_INTERFACE
@router.patch("/subtasks/{subtask_id}", response_model=SubtaskOut, summary="Update a subtask")
def update_subtask(
    subtask_id: str, payload: SubtaskUpdate, ctx: RequestContext = Depends(get_request_context)
) -> SubtaskEntity:
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one field is required")
    updated = ctx.store.update_subtask(ctx.user_id, subtask_id, fields)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subtask not found")
    return updated


# PUBLIC_INTERFACE
@router.delete("/subtasks/{subtask_id}", response_model=SuccessOut, summary="Delete a subtask")
def delete_subtask(subtask_id: str, ctx: RequestContext = Depends(get_request_context)) -> dict:
    ctx.store.delete_subtask(ctx.user_id, subtask_id)
    return {"success": True}
