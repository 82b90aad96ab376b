"""Pytest configuration and fixtures."""

import pytest
from app.database import get_db, get_orchestrator, reset_state
from app.main import app
from fastapi.testclient import TestClient

from tasksync.config import SyncConfig
from tasksync.storage import SQLiteStorage
from tasksync.sync import SyncOrchestrator
from tasksync.types import BatchItemVerdict, BatchResponse, VerdictStatus


class StubTransport:
    """In-memory peer for the API's own sync runs."""

    def __init__(self, online=True):
        self.online = online
        self.batches = []

    def check_health(self):
        return self.online

    def send_batch(self, items, client_timestamp):
        self.batches.append(list(items))
        return BatchResponse(
            processed_items=[
                BatchItemVerdict(client_id=i.id, status=VerdictStatus.SUCCESS, server_id="peer-1")
                for i in items
            ]
        )


@pytest.fixture(autouse=True)
def tasksync_home(tmp_path, monkeypatch):
    """Keep sync event logs inside the test's temp directory."""
    monkeypatch.setenv("TASKSYNC_DATA_DIR", str(tmp_path / "home"))
    return tmp_path / "home"


@pytest.fixture
def server_storage(tmp_path):
    """Task store behind the API."""
    storage = SQLiteStorage(tmp_path / "server.db")
    yield storage
    storage.close()


@pytest.fixture
def peer():
    return StubTransport()


@pytest.fixture
def api_orchestrator(server_storage, peer):
    return SyncOrchestrator(server_storage, server_storage.queue, peer, SyncConfig())


@pytest.fixture
def client(server_storage, api_orchestrator):
    """Create a test client wired to the temp store."""
    app.dependency_overrides[get_db] = lambda: server_storage
    app.dependency_overrides[get_orchestrator] = lambda: api_orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_state()
