"""
tasksync Protocol Definitions
=============================

Interface contracts between the sync components.

Components and their roles:
- Task Store:      Durable task records. Every mutation also enqueues.
- Mutation Queue:  Ordered, durable log of pending create/update/delete items.
- Batch Transport: Ships a batch to the remote peer, returns per-item verdicts.
- Orchestrator:    Drains the queue through the transport and applies verdicts.

The queue is a single injected instance shared by the task store and the
orchestrator. Nothing holds queue state in memory.

Error handling philosophy:
- Invalid task input raises ValidationError (a ValueError)
- Storage failures (sqlite3.Error) propagate to the caller of sync()
- Transport failures raise TransportError and are recovered per item
- Per-item failures never raise; they are reported in the SyncResult
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

from tasksync.types import (
    BatchResponse,
    FailureOutcome,
    MutationPayload,
    Operation,
    QueueItem,
    SyncConflict,
    Task,
)

# =============================================================================
# ERRORS
# =============================================================================


class TaskSyncError(Exception):
    """Base for all tasksync errors."""

    pass


class ValidationError(TaskSyncError, ValueError):
    """Raised when task input fails validation."""

    pass


class StorageError(TaskSyncError):
    """Raised when the local store cannot be opened or is misconfigured."""

    pass


class TransportError(TaskSyncError):
    """Raised when a batch or probe fails as a whole.

    No item of the affected batch may be considered confirmed.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncInProgressError(TaskSyncError):
    """Raised by a non-blocking sync() call while another run holds the lock."""

    pass


# =============================================================================
# COMPONENT PROTOCOLS
# =============================================================================


@runtime_checkable
class MutationQueue(Protocol):
    """Durable queue of pending mutations."""

    max_retries: int

    def enqueue(
        self,
        task_id: str,
        operation: Operation,
        payload: MutationPayload,
        conn: Optional[sqlite3.Connection] = None,
    ) -> QueueItem: ...

    def pending_items(self, max_retries: Optional[int] = None) -> list[QueueItem]: ...

    def record_failure(self, item: QueueItem, error_message: str) -> FailureOutcome: ...

    def remove(self, item_id: str) -> bool: ...

    def remove_all_for_task(self, task_id: str) -> int: ...

    def size(self) -> int: ...

    def pending_count_for_task(self, task_id: str) -> int: ...


@runtime_checkable
class TaskStore(Protocol):
    """The narrow task-store contract the orchestrator depends on."""

    def get_task(self, task_id: str, include_deleted: bool = False) -> Optional[Task]: ...

    def confirm_item(
        self,
        item_id: str,
        task_id: str,
        server_id: Optional[str] = None,
        synced_at: Optional[datetime] = None,
        server_version: Optional[Task] = None,
    ) -> bool:
        """Remove a confirmed item and stamp its task, atomically."""
        ...

    def save_sync_conflict(self, conflict: SyncConflict) -> str: ...

    def set_last_sync_time(self, when: Optional[str] = None) -> None: ...

    def get_last_sync_time(self) -> Optional[datetime]: ...


@runtime_checkable
class BatchTransport(Protocol):
    """Network boundary to the remote peer."""

    def check_health(self) -> bool: ...

    def send_batch(
        self, items: Sequence[QueueItem], client_timestamp: datetime
    ) -> BatchResponse: ...
