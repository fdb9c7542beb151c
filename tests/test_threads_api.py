import pytest
from fastapi.testclient import TestClient

from fakes import MEMORY_DB, FakeFirestoreClient, FaultyStore
from main import create_app
from services.activity_log import ActivityLog
from services.relational_store import RelationalStore


def new_thread(user_id, category_id=1, title="Hello", content="World"):
    return {"title": title, "content": content, "userId": user_id, "categoryId": category_id}


def test_create_thread_then_list_it(client, register_user):
    user_id = register_user(client)

    response = client.post("/api/threads", json=new_thread(user_id))

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Thread and original post created successfully"
    listing = client.get("/api/threads").json()
    assert len(listing) == 1
    assert listing[0]["id"] == body["threadId"]
    assert listing[0]["title"] == "Hello"
    assert listing[0]["categories"] == {"name": "General"}
    assert listing[0]["users"] == {"username": "alice"}
    assert listing[0]["created_at"].endswith(("Z", "+00:00"))


def test_list_is_newest_first(client, register_user):
    user_id = register_user(client)
    for title in ("first", "second", "third"):
        assert client.post("/api/threads", json=new_thread(user_id, title=title)).status_code == 201

    listing = client.get("/api/threads").json()

    assert [t["title"] for t in listing] == ["third", "second", "first"]
    stamps = [t["created_at"] for t in listing]
    assert stamps == sorted(stamps, reverse=True)


def test_empty_listing(client):
    response = client.get("/api/threads")
    assert response.status_code == 200
    assert response.json() == []


def test_unknown_category_creates_nothing(client, register_user):
    user_id = register_user(client)

    response = client.post("/api/threads", json=new_thread(user_id, category_id=42))

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to create thread."
    assert "details" in response.json()
    assert client.get("/api/threads").json() == []


def test_post_failure_is_rolled_back(make_client, register_user):
    store = FaultyStore.from_url(MEMORY_DB)
    store.fail_insert_into = {"posts"}
    client = make_client(store=store)
    user_id = register_user(client)

    response = client.post("/api/threads", json=new_thread(user_id))

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to create original post.",
        "details": "simulated failure inserting into posts",
        "compensated": True,
    }
    assert client.get("/api/threads").json() == []


def test_failed_rollback_is_reported(make_client, register_user):
    store = FaultyStore.from_url(MEMORY_DB)
    store.fail_insert_into = {"posts"}
    store.fail_delete_from = {"threads"}
    client = make_client(store=store)
    user_id = register_user(client)

    response = client.post("/api/threads", json=new_thread(user_id))

    assert response.status_code == 500
    assert response.json()["compensated"] is False


@pytest.mark.parametrize("payload", [
    {"content": "World", "userId": 1, "categoryId": 1},
    {"title": "Hello", "userId": 1, "categoryId": 1},
    {"title": "Hello", "content": "World", "categoryId": 1},
    {"title": "Hello", "content": "World", "userId": 1},
    {"title": "   ", "content": "World", "userId": 1, "categoryId": 1},
    {"title": "Hello", "content": "", "userId": 1, "categoryId": 1},
    {"title": "Hello", "content": "World", "userId": "one", "categoryId": 1},
])
def test_invalid_payload_is_rejected_before_store_access(client, payload):
    response = client.post("/api/threads", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing or invalid fields."
    assert response.json()["details"]
    assert client.get("/api/threads").json() == []


def test_listing_is_logged_as_guest_request(settings, firestore_client):
    app = create_app(settings, store=RelationalStore.from_url(MEMORY_DB), activity_log=ActivityLog(firestore_client))
    with TestClient(app) as client:
        client.get("/api/threads")

    [entry] = firestore_client.documents["activity_logs"]
    assert entry["action"] == "GET_THREADS_REQUEST"
    assert entry["userId"] == 0
    assert "ip" in entry["details"]
    assert firestore_client.closed


@pytest.mark.parametrize("activity_log", [
    ActivityLog(None),
    ActivityLog(FakeFirestoreClient(fail=True)),
], ids=["not-ready", "failing"])
def test_log_store_outage_does_not_change_responses(make_client, register_user, activity_log):
    healthy = make_client()
    degraded = make_client(activity_log=activity_log)

    for client in (healthy, degraded):
        register_user(client)
    created = [c.post("/api/threads", json=new_thread(1)) for c in (healthy, degraded)]
    listed = [c.get("/api/threads") for c in (healthy, degraded)]

    assert created[0].status_code == created[1].status_code == 201
    assert created[0].json() == created[1].json()
    assert listed[0].status_code == listed[1].status_code == 200
    assert [t["title"] for t in listed[0].json()] == [t["title"] for t in listed[1].json()]


def test_listing_store_failure_is_500(make_client):
    store = FaultyStore.from_url(MEMORY_DB)
    store.fail_select_from = {"threads"}
    client = make_client(store=store)

    response = client.get("/api/threads")

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch threads from database."}


def test_missing_store_is_500(client):
    store = client.app.state.store
    client.app.state.store = None
    try:
        listed = client.get("/api/threads")
        created = client.post("/api/threads", json=new_thread(1))
    finally:
        client.app.state.store = store

    for response in (listed, created):
        assert response.status_code == 500
        assert response.json() == {"error": "Database service unavailable"}


def test_unexpected_error_is_500_without_internals(make_client):
    store = FaultyStore.from_url(MEMORY_DB)
    store.fail_select_from = {"threads"}
    store.error = RuntimeError("connection pool exploded")
    client = make_client(store=store, raise_server_exceptions=False)

    response = client.get("/api/threads")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error."}


def test_unexpected_post_error_leaves_no_thread(make_client, register_user):
    store = FaultyStore.from_url(MEMORY_DB)
    store.fail_insert_into = {"posts"}
    store.error = RuntimeError("driver exploded")
    client = make_client(store=store, raise_server_exceptions=False)
    user_id = register_user(client)

    response = client.post("/api/threads", json=new_thread(user_id))

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error."}
    assert client.get("/api/threads").json() == []
