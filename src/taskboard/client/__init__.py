"""
asyncio client for taskboard: a mutation executor over httpx, a keyed query
cache, and the optimistic controller that keeps the two in step.
"""

from .api import ApiError, TodoApi, TodoFilters
from .cache import MISSING, TODOS, QueryCache, QueryKey, todos_key
from .optimistic import COLUMN_COMPLETION, MutationRecord, MutationState, OptimisticTodoController

__all__ = [
    "ApiError",
    "COLUMN_COMPLETION",
    "MISSING",
    "MutationRecord",
    "MutationState",
    "OptimisticTodoController",
    "QueryCache",
    "QueryKey",
    "TODOS",
    "TodoApi",
    "TodoFilters",
    "todos_key",
]
