"""Database utilities for the tasksync backend.

The API serves one local SQLite task store. It plays both sides of the sync
protocol: ``/api/tasks`` and ``/api/sync`` act as a client of a remote peer,
``/api/batch`` accepts batches from clients.
"""

from pathlib import Path
from typing import Annotated

from fastapi import Depends

from tasksync.config import SyncConfig
from tasksync.storage import SQLiteStorage
from tasksync.sync import HttpBatchTransport, SyncOrchestrator

from .config import Settings, get_settings

_storage: SQLiteStorage | None = None
_orchestrator: SyncOrchestrator | None = None


def get_storage(settings: Settings | None = None) -> SQLiteStorage:
    """Get cached task storage."""
    global _storage
    if _storage is None:
        if settings is None:
            settings = get_settings()
        _storage = SQLiteStorage(
            Path(settings.database_path), max_retries=settings.sync_max_retries
        )
    return _storage


def get_sync_orchestrator(settings: Settings | None = None) -> SyncOrchestrator:
    """Get cached sync orchestrator bound to the task storage."""
    global _orchestrator
    if _orchestrator is None:
        if settings is None:
            settings = get_settings()
        storage = get_storage(settings)
        config = SyncConfig(
            api_base_url=settings.api_base_url,
            batch_size=settings.sync_batch_size,
            max_retries=settings.sync_max_retries,
            probe_timeout=settings.probe_timeout,
            batch_timeout=settings.batch_timeout,
        )
        transport = HttpBatchTransport(
            base_url=config.api_base_url,
            probe_timeout=config.probe_timeout,
            batch_timeout=config.batch_timeout,
        )
        _orchestrator = SyncOrchestrator(storage, storage.queue, transport, config)
    return _orchestrator


def reset_state() -> None:
    """Drop cached storage and orchestrator (tests, settings reload)."""
    global _storage, _orchestrator
    _storage = None
    _orchestrator = None


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> SQLiteStorage:
    """FastAPI dependency for task storage."""
    return get_storage(settings)


def get_orchestrator(settings: Annotated[Settings, Depends(get_settings)]) -> SyncOrchestrator:
    """FastAPI dependency for the sync orchestrator."""
    return get_sync_orchestrator(settings)


# Type aliases for dependency injection
Database = Annotated[SQLiteStorage, Depends(get_db)]
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
