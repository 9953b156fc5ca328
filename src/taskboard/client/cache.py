"""
Keyed query cache shared by every view of one client session.

Reads go through fetch(), which tracks the in-flight task per key so that a
mutation can cancel competing reads before writing optimistic data.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .api import TodoFilters

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Marks "no cache entry", distinct from an entry whose value is None.
MISSING: Any = _Missing()


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class QueryKey:
    """
    Structured cache key: a query name plus its filters.

    A key with filters=None is a prefix matching every key of that name.
    """

    name: str
    filters: Optional[TodoFilters] = None

    def matches(self, prefix: "QueryKey") -> bool:
        return self.name == prefix.name and (prefix.filters is None or prefix.filters == self.filters)


TODOS = QueryKey("todos")


# PUBLIC_INTERFACE
def todos_key(filters: Optional[TodoFilters] = None) -> QueryKey:
    """Key of one todo list; the default filters stand for the unfiltered list."""
    return QueryKey("todos", filters or TodoFilters())


# PUBLIC_INTERFACE
class QueryCache:
    """
    Process-wide keyed store of query results, constructed once per session.

    Only the optimistic controller writes to it (set/remove); any component
    may read or fetch.

    A key is active while it has a registered fetcher, i.e. while some view
    reads it through fetch(). Invalidation refetches active keys only;
    released keys keep their last value and are just marked stale.
    """

    def __init__(self) -> None:
        self._data: Dict[QueryKey, Any] = {}
        self._stale: Set[QueryKey] = set()
        self._fetchers: Dict[QueryKey, Fetcher] = {}
        self._inflight: Dict[QueryKey, "asyncio.Task[Any]"] = {}

    def get(self, key: QueryKey, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has(self, key: QueryKey) -> bool:
        return key in self._data

    def set(self, key: QueryKey, value: Any) -> None:
        self._data[key] = value
        self._stale.discard(key)

    def remove(self, key: QueryKey) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: Optional[QueryKey] = None) -> List[QueryKey]:
        known = set(self._data) | set(self._fetchers)
        return [k for k in known if prefix is None or k.matches(prefix)]

    def is_stale(self, key: QueryKey) -> bool:
        return key in self._stale

    def is_active(self, key: QueryKey) -> bool:
        return key in self._fetchers

    def release(self, key: QueryKey) -> None:
        """Drop the fetcher of a key no view reads any more."""
        self._fetchers.pop(key, None)

    def is_fetching(self, key: QueryKey) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def _run(self, key: QueryKey, fetcher: Fetcher) -> Any:
        data = await fetcher()
        # No await between the fetch completing and the write, so a cancel()
        # issued before this point always wins.
        self._data[key] = data
        self._stale.discard(key)
        return data

    def _forget(self, key: QueryKey, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def fetch(self, key: QueryKey, fetcher: Optional[Fetcher] = None, force: bool = False) -> Any:
        """
        Run (or join) the read for `key` and return its data.

        The fetcher is remembered for later refetches. With force=True an
        in-flight read is cancelled and a fresh one started. If the read is
        cancelled by a competing mutation, the current cached value is returned.
        Fetch errors propagate and leave the cached value untouched.
        """
        if fetcher is not None:
            self._fetchers[key] = fetcher
        if key not in self._fetchers:
            raise KeyError(f"no fetcher registered for {key!r}")

        task = self._inflight.get(key)
        if task is not None and not task.done() and force:
            await self.cancel(key)
            task = None
        if task is None or task.done():
            task = asyncio.ensure_future(self._run(key, self._fetchers[key]))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # Superseded by cancel(); the caller itself was not cancelled.
                return self._data.get(key)
            raise

    async def cancel(self, prefix: QueryKey) -> None:
        """Cancel in-flight reads for every key matching `prefix` and wait for them to stop."""
        tasks = [t for k, t in list(self._inflight.items()) if k.matches(prefix) and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def invalidate(self, prefix: QueryKey) -> None:
        """
        Mark every key matching `prefix` stale and refetch the active ones.
        A failed refetch is logged and leaves the stale value cached.
        """
        keys = self.keys(prefix)
        self._stale.update(keys)
        refetch = [k for k in keys if self.is_active(k)]
        if not refetch:
            return
        results = await asyncio.gather(*(self.fetch(k, force=True) for k in refetch), return_exceptions=True)
        for key, result in zip(refetch, results):
            if isinstance(result, BaseException):
                logger.warning("refetch of %r failed: %s", key, result)
