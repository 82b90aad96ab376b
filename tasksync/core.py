"""
tasksync Core - offline-first task management.

This module provides the TaskSync class, the primary interface for task
operations. Tasks are written to local SQLite storage first; every mutation
is queued and later reconciled with the server by the sync orchestrator.
"""

import logging
from typing import Any, Dict, List, Optional

from tasksync.config import SyncConfig, load_config
from tasksync.protocols import BatchTransport
from tasksync.storage import SQLiteStorage
from tasksync.sync import HttpBatchTransport, SyncOrchestrator
from tasksync.types import QueueItem, SyncConflict, SyncResult, Task

logger = logging.getLogger(__name__)

DISCARDED_MESSAGE = "Pending changes discarded"


class TaskSync:
    """Main interface for tasks and sync.

    Examples:
        ts = TaskSync()
        task = ts.create_task({"title": "Buy milk"})
        result = ts.sync()
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        storage: Optional[SQLiteStorage] = None,
        transport: Optional[BatchTransport] = None,
    ):
        """Initialize TaskSync.

        Args:
            config: Sync settings. If None, loaded from file and environment.
            storage: Optional storage backend. If None, opens the configured
                SQLite database.
            transport: Optional batch transport. If None, an HTTP transport
                for the configured base URL.
        """
        self.config = config or load_config()
        self._storage = storage or SQLiteStorage(
            self.config.resolved_db_path(), max_retries=self.config.max_retries
        )
        self._transport = transport or HttpBatchTransport(
            base_url=self.config.api_base_url,
            probe_timeout=self.config.probe_timeout,
            batch_timeout=self.config.batch_timeout,
        )
        self._orchestrator = SyncOrchestrator(
            store=self._storage,
            queue=self._storage.queue,
            transport=self._transport,
            config=self.config,
        )

        logger.debug(
            f"TaskSync initialized with storage: {self._storage.db_path}, "
            f"remote: {self.config.api_base_url}"
        )

    @property
    def storage(self) -> SQLiteStorage:
        return self._storage

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self._orchestrator

    def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if callable(close):
            close()
        self._storage.close()

    # =========================================================================
    # TASKS
    # =========================================================================

    def create_task(self, data: Dict[str, Any]) -> Task:
        return self._storage.create_task(data)

    def update_task(self, task_id: str, data: Dict[str, Any]) -> Optional[Task]:
        return self._storage.update_task(task_id, data)

    def delete_task(self, task_id: str) -> bool:
        return self._storage.delete_task(task_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._storage.get_task(task_id)

    def list_tasks(self) -> List[Task]:
        return self._storage.list_tasks()

    def get_tasks_needing_sync(self) -> List[Task]:
        return self._storage.get_tasks_needing_sync()

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync(self, blocking: bool = True) -> SyncResult:
        """Reconcile queued changes with the server."""
        return self._orchestrator.sync(blocking=blocking)

    def is_online(self) -> bool:
        return self._orchestrator.is_online()

    def get_sync_status(self) -> Dict[str, Any]:
        """Pending queue size, last sync time and connectivity."""
        return self._orchestrator.status()

    def get_queue(self) -> List[QueueItem]:
        """Every queued mutation, oldest first."""
        return self._storage.queue.pending_items()

    def discard_pending(self, task_id: str) -> int:
        """Drop all queued changes for a task and flag it as failed.

        Returns the number of queue items removed.
        """
        removed = self._storage.queue.remove_all_for_task(task_id)
        if removed:
            self._storage.mark_task_error(task_id, DISCARDED_MESSAGE)
            logger.info(f"Discarded {removed} pending changes for task {task_id}")
        return removed

    def get_sync_conflicts(self, limit: int = 100) -> List[SyncConflict]:
        return self._storage.get_sync_conflicts(limit=limit)

