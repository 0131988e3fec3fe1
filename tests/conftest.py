"""
Shared pytest fixtures for the asset lifecycle test suite.
"""
import datetime
import os
import tempfile

import pytest

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="asset-lifecycle-logs-")
os.environ["ASSET_STORE"] = "sql"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"

from lifecycle import AssetLifecycle, BulkImporter, MemoryStore  # noqa: E402

FIXED_NOW = datetime.datetime(2024, 5, 1, 9, 30)
FIXED_EPOCH = 1714555800.5
SYSTEM_USER_ID = 1
ALICE_ID = 2


@pytest.fixture
def memory_store():
    store = MemoryStore()
    store.add_user(SYSTEM_USER_ID, "system")
    store.add_user(ALICE_ID, "alice")
    return store


@pytest.fixture
def lifecycle(memory_store):
    return AssetLifecycle(
        memory_store, system_assignee_id=SYSTEM_USER_ID, clock=lambda: FIXED_NOW
    )


@pytest.fixture
def importer(lifecycle):
    return BulkImporter(lifecycle, tag_prefix="AST", clock=lambda: FIXED_EPOCH)


@pytest.fixture
def make_asset(lifecycle):
    """Create an asset and drive it into the requested status."""
    counter = {"value": 0}

    def _make(status="available", **fields):
        counter["value"] += 1
        data = {
            "asset_tag": f"TAG-{counter['value']:03d}",
            "name": f"Laptop {counter['value']}",
            "category": "Laptop",
        }
        data.update(fields)
        if status in {"pending", "archived"}:
            data["status"] = status
        record = lifecycle.create_asset(data)
        if status in {"deployed", "overdue"}:
            record = lifecycle.checkout(record["id"], ALICE_ID)
        if status == "overdue":
            record = lifecycle.mark_overdue(record["id"])
        return record

    return _make


@pytest.fixture
def flask_app():
    import app as app_module

    app_module.app.config["TESTING"] = True
    with app_module.app.app_context():
        app_module.db.drop_all()
        app_module.db.create_all()
        app_module.ensure_default_users()
    app_module._DB_INIT_DONE = True
    yield app_module
    with app_module.app.app_context():
        app_module.db.session.remove()
        app_module.db.drop_all()


@pytest.fixture
def client(flask_app):
    return flask_app.app.test_client()


@pytest.fixture
def auth_headers(client):
    def _headers(username="admin", password=None):
        response = client.post(
            "/api/auth/login",
            json={"username": username, "password": password or username},
        )
        assert response.status_code == 200, response.get_json()
        token = response.get_json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _headers
