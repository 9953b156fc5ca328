import asyncio

import pytest

from taskboard.client import MISSING, TODOS, QueryCache, QueryKey, TodoFilters, todos_key


class TestQueryKey:
    def test_prefix_matches_every_filter_set(self):
        completed = todos_key(TodoFilters(status="completed"))
        assert completed.matches(TODOS)
        assert todos_key().matches(TODOS)
        assert not completed.matches(todos_key())
        assert not QueryKey("profile").matches(TODOS)

    def test_default_filters_are_the_unfiltered_list(self):
        assert todos_key() == todos_key(TodoFilters())


class TestQueryCache:
    def test_missing_is_distinct_from_none(self):
        cache = QueryCache()
        key = todos_key()
        assert cache.get(key, MISSING) is MISSING
        cache.set(key, None)
        assert cache.get(key, MISSING) is None
        cache.remove(key)
        assert not cache.has(key)

    @pytest.mark.asyncio
    async def test_fetch_stores_result(self):
        cache = QueryCache()
        key = todos_key()

        async def fetcher():
            return [{"id": "1"}]

        assert await cache.fetch(key, fetcher) == [{"id": "1"}]
        assert cache.get(key) == [{"id": "1"}]
        assert not cache.is_fetching(key)

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_read(self):
        cache = QueryCache()
        key = todos_key()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return ["data"]

        first, second = await asyncio.gather(cache.fetch(key, fetcher), cache.fetch(key))
        assert first == second == ["data"]
        assert calls == 1

    @pytest.mark.asyncio
    async def test_fetch_without_fetcher(self):
        with pytest.raises(KeyError):
            await QueryCache().fetch(todos_key())

    @pytest.mark.asyncio
    async def test_cancelled_read_never_writes(self):
        cache = QueryCache()
        key = todos_key()
        cache.set(key, ["old"])
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return ["stale"]

        reader = asyncio.create_task(cache.fetch(key, slow))
        await asyncio.sleep(0)
        assert cache.is_fetching(key)

        cache.set(key, ["optimistic"])
        await cache.cancel(TODOS)
        gate.set()

        assert await reader == ["optimistic"]
        assert cache.get(key) == ["optimistic"]
        assert not cache.is_fetching(key)

    @pytest.mark.asyncio
    async def test_invalidate_refetches_every_matching_key(self):
        cache = QueryCache()
        server = {"all": ["a1"], "completed": ["c1"]}
        all_key = todos_key()
        done_key = todos_key(TodoFilters(status="completed"))

        async def fetch_all():
            return list(server["all"])

        async def fetch_done():
            return list(server["completed"])

        await cache.fetch(all_key, fetch_all)
        await cache.fetch(done_key, fetch_done)
        server["all"].append("a2")
        server["completed"].append("c2")

        await cache.invalidate(TODOS)
        assert cache.get(all_key) == ["a1", "a2"]
        assert cache.get(done_key) == ["c1", "c2"]
        assert not cache.is_stale(all_key)

    @pytest.mark.asyncio
    async def test_failed_refetch_keeps_stale_value(self, caplog):
        cache = QueryCache()
        key = todos_key()
        fail = False

        async def fetcher():
            if fail:
                raise RuntimeError("offline")
            return ["cached"]

        await cache.fetch(key, fetcher)
        fail = True
        await cache.invalidate(TODOS)

        assert cache.get(key) == ["cached"]
        assert cache.is_stale(key)
        assert "offline" in caplog.text

    @pytest.mark.asyncio
    async def test_invalidate_without_fetcher_only_marks_stale(self):
        cache = QueryCache()
        key = todos_key()
        cache.set(key, ["x"])
        await cache.invalidate(TODOS)
        assert cache.get(key) == ["x"]
        assert cache.is_stale(key)

    @pytest.mark.asyncio
    async def test_released_keys_are_marked_stale_but_not_refetched(self):
        cache = QueryCache()
        old_key = todos_key(TodoFilters(search="b"))
        new_key = todos_key(TodoFilters(search="bu"))
        reads = []

        def reader(name):
            async def fetcher():
                reads.append(name)
                return [name]

            return fetcher

        await cache.fetch(old_key, reader("b"))
        await cache.fetch(new_key, reader("bu"))
        cache.release(old_key)
        assert not cache.is_active(old_key)
        assert cache.is_active(new_key)
        reads.clear()

        await cache.invalidate(TODOS)

        assert reads == ["bu"]
        assert cache.get(old_key) == ["b"]
        assert cache.is_stale(old_key)
        assert not cache.is_stale(new_key)
