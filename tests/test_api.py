# tests/test_api.py

import json

import pytest

from .helpers import DEADLINE


def create_user(client, name="Ada", email=None, **extra):
    body = {"name": name, "email": email or f"{name.lower()}@example.com", **extra}
    resp = client.post("/api/users", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def create_task(client, name="Write spec", **extra):
    body = {"name": name, "deadline": DEADLINE, **extra}
    resp = client.post("/api/tasks", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_home(client):
    resp = client.get("/api/")
    assert resp.status_code == 200
    assert resp.json()["message"] == "OK"


# ---- tasks ----

def test_create_task_assigned_to_existing_user(client):
    user = create_user(client, "Ada")
    resp = client.post(
        "/api/tasks",
        json={"name": "Write spec", "deadline": DEADLINE, "assignedUser": user["_id"], "completed": False},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "Task created successfully"
    task = body["data"]
    assert task["assignedUserName"] == "Ada"
    assert task["description"] == ""
    assert task["createdAt"]

    user = client.get(f"/api/users/{user['_id']}").json()["data"]
    assert task["_id"] in user["pendingTasks"]


def test_create_task_with_unknown_user_is_rejected(client):
    resp = client.post("/api/tasks", json={"name": "Orphan", "deadline": DEADLINE, "assignedUser": "does-not-exist"})

    assert resp.status_code == 400
    assert resp.json() == {"message": "Bad Request", "data": "Assigned user not found"}
    assert client.get("/api/tasks", params={"count": "true"}).json()["data"] == 0


def test_create_task_missing_fields(client):
    resp = client.post("/api/tasks", json={"name": "No deadline"})

    assert resp.status_code == 400
    assert resp.json()["data"] == "Task name and deadline are required"


def test_create_task_with_bad_deadline(client):
    resp = client.post("/api/tasks", json={"name": "Bad", "deadline": "not a date"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "Bad Request"


def test_create_task_from_form_body(client):
    user = create_user(client, "Ada")
    resp = client.post(
        "/api/tasks",
        data={"name": "Form task", "deadline": DEADLINE, "assignedUser": user["_id"], "completed": "false"},
    )

    assert resp.status_code == 201
    task = resp.json()["data"]
    assert task["completed"] is False
    assert task["assignedUserName"] == "Ada"


def test_invalid_json_body(client):
    resp = client.post("/api/tasks", content="{not json", headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert resp.json()["data"] == "Invalid JSON body"


def test_get_task_and_select(client):
    task = create_task(client, description="details")

    resp = client.get(f"/api/tasks/{task['_id']}", params={"select": json.dumps({"name": 1})})

    assert resp.status_code == 200
    assert resp.json()["data"] == {"_id": task["_id"], "name": "Write spec"}


def test_get_unknown_task(client):
    resp = client.get("/api/tasks/unknown")

    assert resp.status_code == 404
    assert resp.json() == {"message": "Task Not Found", "data": "Task not found"}


def test_update_task_reassigns(client):
    ada = create_user(client, "Ada")
    bob = create_user(client, "Bob")
    task = create_task(client, assignedUser=ada["_id"])

    resp = client.put(
        f"/api/tasks/{task['_id']}",
        json={"name": "Write spec", "deadline": DEADLINE, "assignedUser": bob["_id"]},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["assignedUserName"] == "Bob"
    assert client.get(f"/api/users/{ada['_id']}").json()["data"]["pendingTasks"] == []
    assert client.get(f"/api/users/{bob['_id']}").json()["data"]["pendingTasks"] == [task["_id"]]


def test_update_unknown_task(client):
    resp = client.put("/api/tasks/unknown", json={"name": "x", "deadline": DEADLINE})
    assert resp.status_code == 404


def test_delete_task(client):
    ada = create_user(client, "Ada")
    task = create_task(client, assignedUser=ada["_id"])

    resp = client.delete(f"/api/tasks/{task['_id']}")

    assert resp.status_code == 200
    assert client.get(f"/api/tasks/{task['_id']}").status_code == 404
    user = client.get(f"/api/users/{ada['_id']}").json()["data"]
    assert user["pendingTasks"] == []
    assert user["name"] == "Ada"


# ---- users ----

def test_create_user_duplicate_email(client):
    create_user(client, "Ada", email="ada@example.com")
    resp = client.post("/api/users", json={"name": "Other", "email": "ADA@example.com"})

    assert resp.status_code == 400
    assert resp.json()["data"] == "A user with this email already exists"


def test_create_user_missing_fields(client):
    resp = client.post("/api/users", json={"name": "Ada"})

    assert resp.status_code == 400
    assert resp.json()["data"] == "Name and email are required"


def test_update_user_conflict_keeps_owner(client):
    ada = create_user(client, "Ada")
    bob = create_user(client, "Bob")
    task = create_task(client, assignedUser=ada["_id"])

    resp = client.put(
        f"/api/users/{bob['_id']}",
        json={"name": "Bob", "email": "bob@example.com", "pendingTasks": [task["_id"]]},
    )

    assert resp.status_code == 400
    assert resp.json()["data"] == "The task is already assigned to another user"
    assert client.get(f"/api/tasks/{task['_id']}").json()["data"]["assignedUser"] == ada["_id"]


def test_update_user_with_unknown_task(client):
    ada = create_user(client, "Ada")

    resp = client.put(
        f"/api/users/{ada['_id']}",
        json={"name": "Ada", "email": "ada@example.com", "pendingTasks": ["ghost"]},
    )

    assert resp.status_code == 400
    assert resp.json()["data"] == "Task with id ghost not found"


def test_update_user_from_form_with_repeated_pending_tasks(client):
    ada = create_user(client, "Ada")
    first = create_task(client, name="First")
    second = create_task(client, name="Second")

    resp = client.put(
        f"/api/users/{ada['_id']}",
        data={"name": "Ada", "email": "ada@example.com", "pendingTasks": [first["_id"], second["_id"]]},
    )

    assert resp.status_code == 200
    assert sorted(resp.json()["data"]["pendingTasks"]) == sorted([first["_id"], second["_id"]])


def test_update_unknown_user(client):
    resp = client.put("/api/users/unknown", json={"name": "x", "email": "x@example.com"})
    assert resp.status_code == 404
    assert resp.json()["message"] == "User Not Found"


def test_delete_user_unassigns_tasks(client):
    ada = create_user(client, "Ada")
    task = create_task(client, assignedUser=ada["_id"])

    resp = client.delete(f"/api/users/{ada['_id']}")

    assert resp.status_code == 200
    after = client.get(f"/api/tasks/{task['_id']}").json()["data"]
    assert after["assignedUser"] == ""
    assert after["assignedUserName"] == "unassigned"
    assert client.get(f"/api/users/{ada['_id']}").status_code == 404


# ---- list queries ----

@pytest.fixture()
def three_tasks(client):
    ada = create_user(client, "Ada")
    return ada, [
        create_task(client, name="Alpha", deadline="2030-01-01T00:00:00Z", assignedUser=ada["_id"]),
        create_task(client, name="Beta", deadline="2030-02-01T00:00:00Z", completed=True),
        create_task(client, name="Gamma", deadline="2030-03-01T00:00:00Z"),
    ]


def test_list_where_and_sort(client, three_tasks):
    resp = client.get(
        "/api/tasks",
        params={"where": json.dumps({"completed": False}), "sort": json.dumps({"name": -1})},
    )

    assert resp.status_code == 200
    assert resp.json()["message"] == "Tasks retrieved successfully"
    assert [t["name"] for t in resp.json()["data"]] == ["Gamma", "Alpha"]


def test_list_date_range(client, three_tasks):
    where = {"deadline": {"$gte": "2030-01-15T00:00:00Z", "$lt": "2030-03-01T00:00:00Z"}}
    resp = client.get("/api/tasks", params={"where": json.dumps(where)})

    assert [t["name"] for t in resp.json()["data"]] == ["Beta"]


def test_list_skip_limit(client, three_tasks):
    resp = client.get("/api/tasks", params={"sort": json.dumps({"deadline": 1}), "skip": "1", "limit": "1"})

    assert [t["name"] for t in resp.json()["data"]] == ["Beta"]


def test_list_count(client, three_tasks):
    resp = client.get("/api/tasks", params={"where": json.dumps({"completed": True}), "count": "1"})

    assert resp.json() == {"message": "Tasks count retrieved successfully", "data": 1}


def test_list_select_exclusion(client, three_tasks):
    resp = client.get("/api/tasks", params={"select": json.dumps({"description": 0, "_id": 0}), "limit": "1"})

    doc = resp.json()["data"][0]
    assert "_id" not in doc
    assert "description" not in doc
    assert "name" in doc


def test_list_where_id_with_no_match_is_404(client, three_tasks):
    resp = client.get("/api/tasks", params={"where": json.dumps({"_id": "nope"})})

    assert resp.status_code == 404
    assert resp.json()["message"] == "Task Not Found"


def test_list_users_by_pending_task(client, three_tasks):
    ada, tasks = three_tasks
    create_user(client, "Bob")

    resp = client.get("/api/users", params={"where": json.dumps({"pendingTasks": tasks[0]["_id"]})})
    assert [u["name"] for u in resp.json()["data"]] == ["Ada"]

    resp = client.get("/api/users", params={"where": json.dumps({"pendingTasks": {"$size": 0}})})
    assert [u["name"] for u in resp.json()["data"]] == ["Bob"]


@pytest.mark.parametrize("params, detail", [
    ({"where": "{bad"}, "Invalid JSON in where parameter"),
    ({"sort": "nope"}, "Invalid JSON in sort parameter"),
    ({"select": "[1"}, "Invalid JSON in select parameter"),
    ({"skip": "-1"}, "Invalid skip parameter"),
    ({"limit": "abc"}, "Invalid limit parameter"),
])
def test_list_bad_parameters(client, params, detail):
    resp = client.get("/api/users", params=params)

    assert resp.status_code == 400
    assert resp.json() == {"message": "Bad Request", "data": detail}


def test_tasks_default_limit(client, monkeypatch):
    import main
    monkeypatch.setattr(main, "TASKS_DEFAULT_LIMIT", 2)
    for i in range(3):
        create_task(client, name=f"T{i}")

    assert len(client.get("/api/tasks").json()["data"]) == 2
    assert len(client.get("/api/tasks", params={"limit": "5"}).json()["data"]) == 3
    assert client.get("/api/tasks", params={"count": "true"}).json()["data"] == 3


def test_limit_zero_means_no_limit(client, monkeypatch):
    import main
    monkeypatch.setattr(main, "TASKS_DEFAULT_LIMIT", 2)
    for i in range(3):
        create_task(client, name=f"T{i}")

    resp = client.get("/api/tasks", params={"limit": "0"})

    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 3


# ---- store failures ----

def test_store_failure_on_write_is_a_generic_500(client, monkeypatch):
    from sqlalchemy.exc import OperationalError
    from store import UserStore

    def broken_create(self, **fields):
        raise OperationalError("INSERT INTO users", {}, Exception("secret connection detail"))

    monkeypatch.setattr(UserStore, "create", broken_create)
    resp = client.post("/api/users", json={"name": "Ada", "email": "ada@example.com"})

    assert resp.status_code == 500
    assert resp.json() == {"message": "Internal Server Error", "data": "Could not create user"}
    assert "secret" not in resp.text


def test_store_failure_on_list_is_a_generic_500(client, monkeypatch):
    from sqlalchemy.exc import OperationalError
    from store import TaskStore

    def broken_find_many(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("secret connection detail"))

    monkeypatch.setattr(TaskStore, "find_many", broken_find_many)
    resp = client.get("/api/tasks")

    assert resp.status_code == 500
    assert resp.json() == {"message": "Internal Server Error", "data": "Failed to retrieve tasks"}
    assert "secret" not in resp.text


def test_unexpected_error_is_a_generic_500(monkeypatch):
    from fastapi.testclient import TestClient
    import main
    from store import UserStore

    def broken_find_by_id(self, id):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(UserStore, "find_by_id", broken_find_by_id)
    client = TestClient(main.app, raise_server_exceptions=False)
    resp = client.get("/api/users/anything")

    assert resp.status_code == 500
    assert resp.json() == {"message": "Internal Server Error", "data": "Something went wrong"}
    assert "secret" not in resp.text
