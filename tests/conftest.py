"""
Pytest fixtures and test configuration for tasksync tests.
"""

import logging
from typing import Callable, List, Optional, Sequence

import pytest

from tasksync.config import SyncConfig
from tasksync.storage import SQLiteStorage
from tasksync.sync import SyncOrchestrator
from tasksync.types import BatchItemVerdict, BatchResponse, QueueItem, VerdictStatus


@pytest.fixture(autouse=True)
def tasksync_home(tmp_path, monkeypatch):
    """Keep config files and logs inside the test's temp directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("TASKSYNC_DATA_DIR", str(home))
    for var in (
        "TASKSYNC_API_BASE_URL",
        "TASKSYNC_BATCH_SIZE",
        "TASKSYNC_MAX_RETRIES",
        "TASKSYNC_PROBE_TIMEOUT",
        "TASKSYNC_BATCH_TIMEOUT",
        "TASKSYNC_DB_PATH",
    ):
        monkeypatch.delenv(var, raising=False)
    yield home
    # setup_tasksync_logging() attaches file handlers under this tmp dir
    logger = logging.getLogger("tasksync")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def storage(temp_db):
    """Create a SQLiteStorage instance for testing."""
    storage = SQLiteStorage(temp_db)
    yield storage
    storage.close()


def succeed_all(items: Sequence[QueueItem]) -> BatchResponse:
    return BatchResponse(
        processed_items=[
            BatchItemVerdict(
                client_id=item.id,
                status=VerdictStatus.SUCCESS,
                server_id=f"srv-{item.task_id[:8]}",
            )
            for item in items
        ]
    )


class FakeTransport:
    """Scriptable in-memory batch transport.

    ``responder`` gets the submitted items and returns a BatchResponse or
    raises TransportError. The default confirms every item.
    """

    def __init__(
        self,
        online: bool = True,
        responder: Optional[Callable[[Sequence[QueueItem]], BatchResponse]] = None,
    ):
        self.online = online
        self.responder = responder or succeed_all
        self.batches: List[List[QueueItem]] = []
        self.health_checks = 0

    def check_health(self) -> bool:
        self.health_checks += 1
        return self.online

    def send_batch(self, items, client_timestamp):
        self.batches.append(list(items))
        return self.responder(items)


@pytest.fixture
def make_transport():
    """Factory for FakeTransport instances."""
    return FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_orchestrator(storage):
    """Build an orchestrator over the test storage with a given transport."""

    def _make(transport, **config_overrides) -> SyncOrchestrator:
        config = SyncConfig(**config_overrides)
        return SyncOrchestrator(storage, storage.queue, transport, config)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, transport):
    return make_orchestrator(transport)
