from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import Priority

NonEmptyStr = Annotated[str, Field(min_length=1)]

# Shared type for incoming due_at which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

TITLE_MAX_LENGTH = 200


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_at input into a datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return as-is.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    "Invalid due_at format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e

    raise ValueError("Invalid type for due_at; expected date, datetime, or ISO8601 string.")


def _clean_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= TITLE_MAX_LENGTH):
        raise ValueError(f"title length must be between 1 and {TITLE_MAX_LENGTH} characters")
    return s


def _reject_explicit_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} may not be null")


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "due_at": "2025-02-01T09:00:00Z",
                "priority": "high",
                "tags": ["Errands", "home"],
            }
        }
    )

    title: str = Field(..., description="Short title for the todo item")
    due_at: Optional[datetime] = Field(
        default=None,
        description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    priority: Priority = Field(default="medium", description="low, medium or high")
    tags: Optional[List[str]] = Field(
        default=None,
        description="Free-text tag names; trimmed, lower-cased and deduplicated server-side",
    )

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce the length bounds.
        """
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("due_at", mode="before")
    @classmethod
    def parse_due_at(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for patching an existing Todo item.
    All fields are optional; only provided fields are written. `due_at` may be
    set to null to clear it. `tags`, when present, replaces the full tag set.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "is_completed": True,
                "tags": ["errands"],
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the todo item")
    is_completed: Optional[bool] = Field(default=None, description="Completion status flag")
    due_at: Optional[datetime] = Field(default=None, description="Due date/time, or null to clear")
    priority: Optional[Priority] = Field(default=None, description="low, medium or high")
    tags: Optional[List[str]] = Field(default=None, description="Complete replacement tag set")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)

    @field_validator("due_at", mode="before")
    @classmethod
    def parse_due_at(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @model_validator(mode="after")
    def check_nulls(self) -> "TodoUpdate":
        _reject_explicit_nulls(self, ("title", "is_completed", "priority", "tags"))
        return self


# PUBLIC_INTERFACE
class TagOut(BaseModel):
    """A tag as attached to a hydrated todo."""

    id: str
    name: str


# PUBLIC_INTERFACE
class SubtaskOut(BaseModel):
    """
    Schema returned by the API for a Subtask.
    """

    id: str = Field(..., description="Unique identifier of the subtask")
    todo_id: str = Field(..., description="Parent todo identifier")
    user_id: str = Field(..., description="Owner identifier")
    title: str
    is_done: bool
    inserted_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a hydrated Todo item: the row plus its tags
    and subtasks, both always present.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "4b7c2a8e-0d0b-4a33-9d1e-3f1c2b0d9e11",
                "user_id": "user-1",
                "title": "Buy milk",
                "is_completed": False,
                "due_at": None,
                "priority": "medium",
                "inserted_at": "2025-01-25T10:15:30.123456+00:00",
                "updated_at": "2025-01-25T10:15:30.123456+00:00",
                "tags": [{"id": "0f2d6a4c-1e9b-4c53-8b7e-5a6d4c3b2a10", "name": "errands"}],
                "subtasks": [],
            }
        }
    )

    id: str = Field(..., description="Unique identifier of the todo item")
    user_id: str = Field(..., description="Owner identifier")
    title: str = Field(..., description="Short title for the todo item")
    is_completed: bool = Field(..., description="Completion status flag")
    due_at: Optional[datetime] = Field(default=None, description="Due date/time as an ISO8601 datetime")
    priority: Priority = Field(..., description="low, medium or high")
    inserted_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    tags: List[TagOut] = Field(..., description="Tags attached to the todo")
    subtasks: List[SubtaskOut] = Field(..., description="Subtasks in creation order")


# PUBLIC_INTERFACE
class SubtaskCreate(BaseModel):
    title: str = Field(..., description="Subtask title")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class SubtaskUpdate(BaseModel):
    """Partial update of a subtask; at least one field is required by the route."""

    title: Optional[str] = None
    is_done: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)

    @model_validator(mode="after")
    def check_nulls(self) -> "SubtaskUpdate":
        _reject_explicit_nulls(self, ("title", "is_done"))
        return self


# AI request/response shapes


class AiParseRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Freeform todo text")


class AiTitleRequest(BaseModel):
    title: str = Field(..., min_length=1, description="Todo title to work from")


# PUBLIC_INTERFACE
class AiParseResponse(BaseModel):
    """Structured todo fields parsed from freeform text."""

    title: str = Field(..., min_length=1)
    due_at: Optional[datetime] = None
    priority: Optional[Priority] = None
    tags: Optional[List[NonEmptyStr]] = None

    @field_validator("due_at", mode="before")
    @classmethod
    def parse_due_at(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)


class AiRewriteResponse(BaseModel):
    title: str = Field(..., min_length=1)


class AiSubtasksResponse(BaseModel):
    subtasks: List[NonEmptyStr] = Field(..., max_length=10)


class AiTagsResponse(BaseModel):
    tags: List[NonEmptyStr] = Field(..., max_length=10)


class ErrorOut(BaseModel):
    message: str


class SuccessOut(BaseModel):
    success: bool
