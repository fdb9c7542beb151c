import pytest
from fastapi.testclient import TestClient

from config import Settings
from fakes import MEMORY_DB, FakeFirestoreClient
from main import create_app
from services.activity_log import ActivityLog
from services.relational_store import RelationalStore


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL=MEMORY_DB,
        SECRET_KEY="test-secret-key",
        SEED_CATEGORIES="General,Announcements",
        STORE_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def firestore_client():
    return FakeFirestoreClient()


@pytest.fixture
def make_client(settings, firestore_client):
    """Start an app on a fresh in-memory database; shut it down after the test."""
    started = []

    def _make(store=None, activity_log=None, raise_server_exceptions=True):
        store = store or RelationalStore.from_url(MEMORY_DB)
        if activity_log is None:
            activity_log = ActivityLog(firestore_client)
        client = TestClient(
            create_app(settings, store=store, activity_log=activity_log),
            raise_server_exceptions=raise_server_exceptions,
        )
        client.__enter__()
        started.append(client)
        return client

    yield _make
    for client in started:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
async def store():
    store = RelationalStore.from_url(MEMORY_DB)
    await store.init_schema()
    await store.insert("categories", {"name": "General"})
    await store.insert("users", {"username": "alice", "email": "alice@example.com", "hashed_password": "x"})
    yield store
    await store.close()


@pytest.fixture
def register_user():
    return _register


def _register(client, username="alice", email=None, password="s3cret-pass"):
    response = client.post("/api/auth/register", json={
        "username": username,
        "email": email or f"{username}@example.com",
        "password": password,
    })
    assert response.status_code == 201, response.text
    return response.json()["userId"]
