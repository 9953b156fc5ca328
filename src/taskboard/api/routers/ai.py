from __future__ import annotations

from fastapi import APIRouter, Depends

from ..ai import AiCollaborator, get_ai_collaborator
from ..auth import RequestContext, get_request_context
from ..schemas import (
    AiParseRequest,
    AiParseResponse,
    AiRewriteResponse,
    AiSubtasksResponse,
    AiTagsResponse,
    AiTitleRequest,
    ErrorOut,
)

# Authentication is enforced for the whole router; handlers never touch the store.
router = APIRouter(
    prefix="/api/ai",
    tags=["ai"],
    dependencies=[Depends(get_request_context)],
    responses={
        400: {"model": ErrorOut, "description": "Bad request"},
        401: {"model": ErrorOut, "description": "Unauthorized"},
        502: {"model": ErrorOut, "description": "AI collaborator failed"},
    },
)


# PUBLIC_INTERFACE
@router.post("/parse", response_model=AiParseResponse, summary="Smart add parsing")
def ai_parse(payload: AiParseRequest, ai: AiCollaborator = Depends(get_ai_collaborator)) -> AiParseResponse:
    """Parse freeform text into structured todo fields."""
    return ai.parse(payload.text)


# PUBLIC_INTERFACE
@router.post("/rewrite", response_model=AiRewriteResponse, summary="Rewrite todo title")
def ai_rewrite(payload: AiTitleRequest, ai: AiCollaborator = Depends(get_ai_collaborator)) -> AiRewriteResponse:
    return ai.rewrite(payload.title)


# PUBLIC_INTERFACE
@router.post("/subtasks", response_model=AiSubtasksResponse, summary="Generate subtasks")
def ai_subtasks(payload: AiTitleRequest, ai: AiCollaborator = Depends(get_ai_collaborator)) -> AiSubtasksResponse:
    return ai.subtasks(payload.title)


# PUBLIC_INTERFACE
@router.post("/tag", response_model=AiTagsResponse, summary="Suggest tags")
def ai_tag(payload: AiTitleRequest, ai: AiCollaborator = Depends(get_ai_collaborator)) -> AiTagsResponse:
    return ai.tags(payload.title)
