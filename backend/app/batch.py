"""Server-side application of received sync batches.

Each item is applied independently and in order:
- create: insert; a replayed create for a known task is handled as an update
- update: apply unless the stored copy is newer, which is a conflict and the
  stored copy goes back as ``resolved_data``
- delete: soft delete; deleting an unknown task still succeeds

Nothing applied here is queued for sync again.
"""

import sqlite3
import uuid

from tasksync.storage import SQLiteStorage
from tasksync.sync.wire import BatchSyncRequest, BatchSyncResponse, ProcessedItem, SyncItem
from tasksync.types import Operation, Task, TaskSnapshot
from tasksync.validation import validate_task_create

from .logging_config import get_logger, log_batch_item

logger = get_logger("tasksync.backend.batch")


def process_batch(storage: SQLiteStorage, request: BatchSyncRequest) -> BatchSyncResponse:
    """Apply every item of a batch and return one verdict per item."""
    processed = [_process_item(storage, item) for item in request.items]
    return BatchSyncResponse(processed_items=processed)


def _process_item(storage: SQLiteStorage, item: SyncItem) -> ProcessedItem:
    client_id = item.client_id or item.task_id
    try:
        if item.operation == Operation.DELETE.value:
            verdict = _apply_delete(storage, client_id, item)
        else:
            verdict = _apply_write(storage, client_id, item)
    except ValueError as e:
        verdict = ProcessedItem(client_id=client_id, server_id=None, status="error", error=str(e))
    except sqlite3.Error as e:
        # Full error server-side only
        logger.error(f"Database error during {item.operation} on task {item.task_id}: {e}")
        verdict = ProcessedItem(
            client_id=client_id,
            server_id=None,
            status="error",
            error="Database error: operation failed",
        )

    log_batch_item(client_id, item.operation, item.task_id, verdict.status, verdict.error)
    return verdict


def _apply_write(storage: SQLiteStorage, client_id: str, item: SyncItem) -> ProcessedItem:
    data = dict(item.data)
    data["id"] = item.task_id
    validate_task_create(
        {
            "title": data.get("title"),
            "description": data.get("description"),
            "completed": data.get("completed", False),
        }
    )
    incoming = TaskSnapshot.from_dict(data)

    existing = storage.get_task(item.task_id, include_deleted=True)
    if existing is not None and _stored_is_newer(existing, incoming):
        return ProcessedItem(
            client_id=client_id,
            server_id=existing.server_id,
            status="conflict",
            resolved_data=_resolved_data(existing),
        )

    task = storage.upsert_remote_task(incoming, server_id=str(uuid.uuid4()))
    return ProcessedItem(
        client_id=client_id,
        server_id=task.server_id,
        status="success",
        resolved_data=_resolved_data(task),
    )


def _apply_delete(storage: SQLiteStorage, client_id: str, item: SyncItem) -> ProcessedItem:
    task = storage.soft_delete_remote(item.task_id)
    return ProcessedItem(
        client_id=client_id,
        server_id=task.server_id if task else None,
        status="success",
        resolved_data={"id": item.task_id, "is_deleted": True},
    )


def _stored_is_newer(existing: Task, incoming: TaskSnapshot) -> bool:
    if existing.updated_at is None or incoming.updated_at is None:
        return False
    return existing.updated_at > incoming.updated_at


def _resolved_data(task: Task) -> dict:
    data = task.snapshot().to_dict()
    data["server_id"] = task.server_id
    return data
