from fastapi.testclient import TestClient

from taskboard.api.main import app

client = TestClient(app)

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}


def create_todo(headers=ALICE, **payload):
    payload.setdefault("title", "Test Task")
    res = client.post("/api/todos", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def tag_names(todo: dict):
    return sorted(t["name"] for t in todo["tags"])


def assert_todo_shape(todo: dict):
    for key in ["id", "user_id", "title", "is_completed", "due_at", "priority", "inserted_at", "updated_at"]:
        assert key in todo
    assert isinstance(todo["id"], str)
    assert isinstance(todo["is_completed"], bool)
    assert todo["priority"] in ("low", "medium", "high")
    # Hydrated todos always carry both arrays
    assert isinstance(todo["tags"], list)
    assert isinstance(todo["subtasks"], list)


class TestHealth:
    def test_health_check(self):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] in ("memory", "sqlite")


class TestAuth:
    def test_missing_credentials(self):
        res = client.get("/api/todos")
        assert res.status_code == 401
        assert res.json() == {"message": "Unauthorized"}
        assert res.headers["www-authenticate"] == "Bearer"

    def test_unknown_token(self):
        res = client.get("/api/todos", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401

    def test_non_bearer_scheme(self):
        res = client.get("/api/todos", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert res.status_code == 401

    def test_auth_checked_before_body(self):
        res = client.post("/api/todos", json={"title": "   "})
        assert res.status_code == 401


class TestTodosCRUD:
    def test_create_with_tags_end_to_end(self):
        todo = create_todo(title="Buy milk", tags=["Errands", " errands ", "HOME"])
        assert_todo_shape(todo)
        assert todo["title"] == "Buy milk"
        assert todo["user_id"] == "alice"
        assert todo["is_completed"] is False
        assert todo["priority"] == "medium"
        assert todo["due_at"] is None
        assert tag_names(todo) == ["errands", "home"]
        assert todo["subtasks"] == []

        listed = client.get("/api/todos", headers=ALICE).json()
        assert [t["id"] for t in listed] == [todo["id"]]
        assert tag_names(listed[0]) == ["errands", "home"]

    def test_create_strips_title_and_keeps_priority(self):
        todo = create_todo(title="  Pay bills  ", priority="high", due_at="2099-12-25")
        assert todo["title"] == "Pay bills"
        assert todo["priority"] == "high"
        # Dates are promoted to midnight
        assert todo["due_at"].startswith("2099-12-25T00:00:00")

    def test_get_todo_and_not_found(self):
        todo = create_todo(title="Read book")
        res_get = client.get(f"/api/todos/{todo['id']}", headers=ALICE)
        assert res_get.status_code == 200
        assert res_get.json()["title"] == "Read book"

        res_404 = client.get("/api/todos/does-not-exist", headers=ALICE)
        assert res_404.status_code == 404
        assert res_404.json() == {"message": "Todo not found"}

    def test_patch_partial_update(self):
        todo = create_todo(title="Partial", priority="low", due_at="2100-01-01")
        res = client.patch(
            f"/api/todos/{todo['id']}", json={"title": "Partial Updated", "is_completed": True}, headers=ALICE
        )
        assert res.status_code == 200
        patched = res.json()
        assert patched["title"] == "Partial Updated"
        assert patched["is_completed"] is True
        # untouched fields stay as they were
        assert patched["priority"] == "low"
        assert patched["due_at"].startswith("2100-01-01")

    def test_patch_null_due_at_clears_it(self):
        todo = create_todo(title="Deadline", due_at="2100-01-01")
        res = client.patch(f"/api/todos/{todo['id']}", json={"due_at": None}, headers=ALICE)
        assert res.status_code == 200
        assert res.json()["due_at"] is None

    def test_patch_not_found(self):
        res = client.patch("/api/todos/123456", json={"title": "Nope"}, headers=ALICE)
        assert res.status_code == 404
        assert res.json()["message"] == "Todo not found"

    def test_patch_empty_body_rejected(self):
        todo = create_todo()
        res = client.patch(f"/api/todos/{todo['id']}", json={}, headers=ALICE)
        assert res.status_code == 400
        assert res.json()["message"] == "At least one field is required"

    def test_delete_cascades_and_is_idempotent(self):
        todo = create_todo(title="ToDelete", tags=["x"])
        sub = client.post(f"/api/todos/{todo['id']}/subtasks", json={"title": "part"}, headers=ALICE)
        assert sub.status_code == 201

        res_del = client.delete(f"/api/todos/{todo['id']}", headers=ALICE)
        assert res_del.status_code == 200
        assert res_del.json() == {"success": True}

        assert client.get(f"/api/todos/{todo['id']}", headers=ALICE).status_code == 404
        assert client.get(f"/api/todos/{todo['id']}/subtasks", headers=ALICE).status_code == 404

        res_again = client.delete(f"/api/todos/{todo['id']}", headers=ALICE)
        assert res_again.status_code == 200
        assert res_again.json() == {"success": True}


class TestTagReplacement:
    def test_patch_tags_replaces_whole_set(self):
        todo = create_todo(title="Tagged", tags=["a", "b"])
        a_and_b = {t["name"]: t["id"] for t in todo["tags"]}

        res = client.patch(f"/api/todos/{todo['id']}", json={"tags": ["B"]}, headers=ALICE)
        assert res.status_code == 200
        assert res.json()["tags"] == [{"id": a_and_b["b"], "name": "b"}]

        res = client.patch(f"/api/todos/{todo['id']}", json={"tags": []}, headers=ALICE)
        assert res.status_code == 200
        assert res.json()["tags"] == []

    def test_tags_only_patch_leaves_row_untouched(self):
        todo = create_todo(title="Row", tags=["one"])
        res = client.patch(f"/api/todos/{todo['id']}", json={"tags": ["two"]}, headers=ALICE)
        assert res.status_code == 200
        patched = res.json()
        assert patched["updated_at"] == todo["updated_at"]
        assert tag_names(patched) == ["two"]

    def test_tags_are_shared_across_todos_of_one_user(self):
        first = create_todo(title="First", tags=["Work"])
        second = create_todo(title="Second", tags=["work"])
        assert first["tags"][0]["id"] == second["tags"][0]["id"]

    def test_blank_tags_are_dropped(self):
        todo = create_todo(title="Blank tags", tags=["", "   ", "ok"])
        assert tag_names(todo) == ["ok"]

    def test_tags_are_per_user(self):
        mine = create_todo(title="Mine", tags=["shared"])
        theirs = create_todo(headers=BOB, title="Theirs", tags=["shared"])
        assert mine["tags"][0]["id"] != theirs["tags"][0]["id"]


class TestListFiltering:
    def seed(self):
        create_todo(title="Buy milk", priority="low", tags=["errands"])
        done = create_todo(title="File taxes", priority="high", tags=["finance"])
        client.patch(f"/api/todos/{done['id']}", json={"is_completed": True}, headers=ALICE)
        create_todo(title="Call the bank", priority="high", tags=["finance", "Errands"])

    def titles(self, **params):
        res = client.get("/api/todos", params=params, headers=ALICE)
        assert res.status_code == 200
        return [t["title"] for t in res.json()]

    def test_newest_first(self):
        self.seed()
        assert self.titles() == ["Call the bank", "File taxes", "Buy milk"]

    def test_status_filter(self):
        self.seed()
        assert self.titles(status="completed") == ["File taxes"]
        assert self.titles(status="pending") == ["Call the bank", "Buy milk"]
        assert len(self.titles(status="all")) == 3

    def test_priority_filter(self):
        self.seed()
        assert self.titles(priority="high") == ["Call the bank", "File taxes"]

    def test_search_is_case_insensitive(self):
        self.seed()
        assert self.titles(search="BANK") == ["Call the bank"]
        assert self.titles(search="   ") == ["Call the bank", "File taxes", "Buy milk"]

    def test_tag_filter_after_hydration(self):
        self.seed()
        assert self.titles(tag="ERRANDS") == ["Call the bank", "Buy milk"]
        assert self.titles(tag="finance", status="pending") == ["Call the bank"]
        assert self.titles(tag="unknown") == []

    def test_invalid_status(self):
        res = client.get("/api/todos", params={"status": "later"}, headers=ALICE)
        assert res.status_code == 400
        assert res.json()["message"] == "Request validation failed"


class TestOwnership:
    def test_other_users_todo_behaves_as_missing(self):
        todo = create_todo(title="Private")
        assert client.get(f"/api/todos/{todo['id']}", headers=BOB).status_code == 404
        assert client.patch(f"/api/todos/{todo['id']}", json={"title": "x"}, headers=BOB).status_code == 404
        assert client.get("/api/todos", headers=BOB).json() == []

        res_del = client.delete(f"/api/todos/{todo['id']}", headers=BOB)
        assert res_del.json() == {"success": True}
        assert client.get(f"/api/todos/{todo['id']}", headers=ALICE).status_code == 200


class TestValidationErrors:
    def test_create_validation_error_title_empty(self):
        res = client.post("/api/todos", json={"title": "  "}, headers=ALICE)
        assert res.status_code == 400
        body = res.json()
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_create_title_too_long(self):
        res = client.post("/api/todos", json={"title": "x" * 201}, headers=ALICE)
        assert res.status_code == 400

    def test_create_bad_priority(self):
        res = client.post("/api/todos", json={"title": "ok", "priority": "urgent"}, headers=ALICE)
        assert res.status_code == 400

    def test_patch_validation_error_bad_due_date(self):
        todo = create_todo(title="Due date bad")
        res = client.patch(f"/api/todos/{todo['id']}", json={"due_at": "not-a-date"}, headers=ALICE)
        assert res.status_code == 400
        assert res.json()["message"] == "Request validation failed"

    def test_patch_explicit_null_title_rejected(self):
        todo = create_todo(title="Keep me")
        res = client.patch(f"/api/todos/{todo['id']}", json={"title": None}, headers=ALICE)
        assert res.status_code == 400
        assert client.get(f"/api/todos/{todo['id']}", headers=ALICE).json()["title"] == "Keep me"
