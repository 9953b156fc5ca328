"""
Mutation executor and read client for the taskboard REST API.

Each method performs exactly one HTTP request and never touches the client
cache; callers decide what to do with the result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)

TokenSource = Union[str, Callable[[], Optional[str]], None]


# PUBLIC_INTERFACE
class ApiError(Exception):
    """
    A failed API call, normalized to a human-readable message.

    status_code is None when the request never produced a response
    (not authenticated locally, or a transport failure).
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TodoFilters:
    """List filters; part of the cache key of a todo list."""

    search: Optional[str] = None
    status: str = "all"  # all, pending, completed
    priority: Optional[str] = None
    tag: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.search:
            params["search"] = self.search
        if self.status and self.status != "all":
            params["status"] = self.status
        if self.priority:
            params["priority"] = self.priority
        if self.tag:
            params["tag"] = self.tag
        return params


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _error_message(res: httpx.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
    return f"Request failed: {res.status_code}"


# PUBLIC_INTERFACE
class TodoApi:
    """
    Async client for the /api surface.

    Args:
        base_url: server origin, e.g. "https://todo.example.com"
        token: bearer token, or a zero-argument callable returning the current one
        transport: optional httpx transport (e.g. httpx.ASGITransport for in-process use)
    """

    def __init__(
        self,
        base_url: str,
        token: TokenSource = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
        prefix: str = "/api",
    ) -> None:
        self._token = token
        self._prefix = prefix.rstrip("/")
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "TodoApi":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _current_token(self) -> Optional[str]:
        if callable(self._token):
            return self._token()
        return self._token

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        token = self._current_token()
        if not token:
            raise ApiError("Not authenticated")

        try:
            res = await self._client.request(
                method,
                f"{self._prefix}{path}",
                json=json,
                params=params or None,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(f"Request failed: {e}") from e

        if res.is_error:
            raise ApiError(_error_message(res), status_code=res.status_code)
        return res.json()

    # todos

    async def list_todos(self, filters: Optional[TodoFilters] = None) -> List[Dict[str, Any]]:
        return await self._request("GET", "/todos", params=(filters or TodoFilters()).to_params())

    async def create_todo(
        self,
        title: str,
        due_at: Optional[Union[datetime, str]] = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"title": title}
        if due_at is not None:
            body["due_at"] = _jsonable(due_at)
        if priority is not None:
            body["priority"] = priority
        if tags is not None:
            body["tags"] = list(tags)
        return await self._request("POST", "/todos", json=body)

    async def update_todo(self, todo_id: str, **changes: Any) -> Dict[str, Any]:
        """PATCH only the given fields; pass due_at=None to clear the due date."""
        body = {k: _jsonable(v) for k, v in changes.items()}
        return await self._request("PATCH", f"/todos/{todo_id}", json=body)

    async def delete_todo(self, todo_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/todos/{todo_id}")

    # subtasks

    async def list_subtasks(self, todo_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/todos/{todo_id}/subtasks")

    async def create_subtask(self, todo_id: str, title: str) -> Dict[str, Any]:
        return await self._request("POST", f"/todos/{todo_id}/subtasks", json={"title": title})

    async def update_subtask(self, subtask_id: str, **changes: Any) -> Dict[str, Any]:
        return await self._request("PATCH", f"/subtasks/{subtask_id}", json=dict(changes))

    async def delete_subtask(self, subtask_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/subtasks/{subtask_id}")

    # ai (read-only suggestions)

    async def ai_parse(self, text: str) -> Dict[str, Any]:
        return await self._request("POST", "/ai/parse", json={"text": text})

    async def ai_rewrite(self, title: str) -> Dict[str, Any]:
        return await self._request("POST", "/ai/rewrite", json={"title": title})

    async def ai_subtasks(self, title: str) -> Dict[str, Any]:
        return await self._request("POST", "/ai/subtasks", json={"title": title})

    async def ai_tag(self, title: str) -> Dict[str, Any]:
        return await self._request("POST", "/ai/tag", json={"title": title})
