import json
from datetime import datetime, timezone

import httpx
import pytest

from taskboard.client import ApiError, TodoApi, TodoFilters


def make_api(handler, token="token-alice"):
    return TodoApi("http://todo.test", token=token, transport=httpx.MockTransport(handler))


class TestTodoFilters:
    def test_defaults_send_nothing(self):
        assert TodoFilters().to_params() == {}

    def test_only_set_values_are_sent(self):
        params = TodoFilters(search="milk", status="completed", priority="high", tag="errands").to_params()
        assert params == {"search": "milk", "status": "completed", "priority": "high", "tag": "errands"}
        assert TodoFilters(status="all", search="").to_params() == {}


class TestTodoApi:
    @pytest.mark.asyncio
    async def test_list_sends_bearer_and_filters(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json=[{"id": "1"}])

        async with make_api(handler) as api:
            todos = await api.list_todos(TodoFilters(status="pending", tag="home"))

        assert todos == [{"id": "1"}]
        assert seen == {"path": "/api/todos", "params": {"status": "pending", "tag": "home"}, "auth": "Bearer token-alice"}

    @pytest.mark.asyncio
    async def test_create_only_sends_given_fields(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": "1"})

        async with make_api(handler) as api:
            await api.create_todo("Buy milk")
            await api.create_todo("Pay rent", due_at=datetime(2030, 1, 1, tzinfo=timezone.utc), tags=["home"])

        assert bodies[0] == {"title": "Buy milk"}
        assert bodies[1] == {"title": "Pay rent", "due_at": "2030-01-01T00:00:00+00:00", "tags": ["home"]}

    @pytest.mark.asyncio
    async def test_update_can_clear_due_date(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "abc"})

        async with make_api(handler) as api:
            await api.update_todo("abc", due_at=None, is_completed=True)

        assert seen == {"method": "PATCH", "path": "/api/todos/abc", "body": {"due_at": None, "is_completed": True}}

    @pytest.mark.asyncio
    async def test_token_callable_is_read_per_request(self):
        tokens = iter(["first", "second"])
        seen = []

        def handler(request):
            seen.append(request.headers["authorization"])
            return httpx.Response(200, json=[])

        api = TodoApi("http://todo.test", token=lambda: next(tokens), transport=httpx.MockTransport(handler))
        await api.list_todos()
        await api.list_todos()
        await api.aclose()
        assert seen == ["Bearer first", "Bearer second"]

    @pytest.mark.asyncio
    async def test_not_authenticated_never_hits_network(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with make_api(handler, token=None) as api:
            with pytest.raises(ApiError) as exc:
                await api.delete_todo("1")
        assert exc.value.message == "Not authenticated"
        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_error_message_from_body(self):
        async with make_api(lambda r: httpx.Response(404, json={"message": "Todo not found"})) as api:
            with pytest.raises(ApiError) as exc:
                await api.update_todo("x", title="y")
        assert exc.value.message == "Todo not found"
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_error_without_message(self):
        async with make_api(lambda r: httpx.Response(500, text="<html>oops</html>")) as api:
            with pytest.raises(ApiError) as exc:
                await api.list_todos()
        assert exc.value.message == "Request failed: 500"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_api(handler) as api:
            with pytest.raises(ApiError) as exc:
                await api.create_subtask("1", "x")
        assert exc.value.message.startswith("Request failed")
        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_subtask_and_ai_paths(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={})

        async with make_api(handler) as api:
            await api.list_subtasks("t1")
            await api.create_subtask("t1", "x")
            await api.update_subtask("s1", is_done=True)
            await api.delete_subtask("s1")
            await api.ai_parse("text")
            await api.ai_rewrite("t")
            await api.ai_subtasks("t")
            await api.ai_tag("t")

        assert seen == [
            ("GET", "/api/todos/t1/subtasks"),
            ("POST", "/api/todos/t1/subtasks"),
            ("PATCH", "/api/subtasks/s1"),
            ("DELETE", "/api/subtasks/s1"),
            ("POST", "/api/ai/parse"),
            ("POST", "/api/ai/rewrite"),
            ("POST", "/api/ai/subtasks"),
            ("POST", "/api/ai/tag"),
        ]
