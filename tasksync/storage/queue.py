"""Durable mutation queue for tasksync storage.

SQLiteMutationQueue owns the ``sync_queue`` table. The task store appends to
it on every mutation; the sync orchestrator reads pending items and asks it
to remove confirmed items or record failures. Every state transition of an
item is a single transaction.
"""

import json
import logging
import sqlite3
import uuid
from typing import Callable, ContextManager, List, Optional

from tasksync.protocols import StorageError
from tasksync.types import (
    FailureOutcome,
    MutationPayload,
    Operation,
    QueueItem,
    SyncStatus,
    parse_datetime,
    payload_from_dict,
)

logger = logging.getLogger(__name__)

# Cap on stored error text
MAX_ERROR_LENGTH = 500

DEFAULT_MAX_RETRIES = 3


class SQLiteMutationQueue:
    """Queue of pending create/update/delete mutations.

    Args:
        connect_fn: Context manager factory yielding a transaction-scoped
            sqlite3 connection (commit on success, rollback on error).
        now_fn: Returns the current timestamp as an ISO string.
        max_retries: Retry count at which an item is purged and its task
            marked ``error``.
    """

    def __init__(
        self,
        connect_fn: Callable[[], ContextManager[sqlite3.Connection]],
        now_fn: Callable[[], str],
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self._connect = connect_fn
        self._now = now_fn
        self.max_retries = max_retries

    # === Writes ===

    def enqueue(
        self,
        task_id: str,
        operation: Operation,
        payload: MutationPayload,
        conn: Optional[sqlite3.Connection] = None,
    ) -> QueueItem:
        """Append a new item with retry count 0.

        When ``conn`` is given the insert joins the caller's transaction, so
        a task write and its queue item commit together.
        """
        operation = Operation(operation)
        if payload.operation is not operation:
            raise ValueError(
                f"Payload variant {payload.operation.value} does not match operation {operation.value}"
            )
        if payload.task_id != task_id:
            raise ValueError(f"Payload task id {payload.task_id} does not match {task_id}")

        item_id = str(uuid.uuid4())
        queued_at = self._now()
        row = (item_id, task_id, operation.value, json.dumps(payload.to_dict()), queued_at)
        sql = """INSERT INTO sync_queue (id, task_id, operation, data, created_at, retry_count)
                 VALUES (?, ?, ?, ?, ?, 0)"""

        if conn is not None:
            conn.execute(sql, row)
        else:
            with self._connect() as own_conn:
                own_conn.execute(sql, row)

        logger.debug(f"Queued {operation.value} for task {task_id} as {item_id}")
        return QueueItem(
            id=item_id,
            task_id=task_id,
            operation=operation,
            payload=payload,
            queued_at=parse_datetime(queued_at),
        )

    def record_failure(self, item: QueueItem, error_message: str) -> FailureOutcome:
        """Increment the retry counter and store the error.

        When the new counter reaches ``max_retries`` the owning task is marked
        ``error`` and the item is removed, in the same transaction.
        """
        error_message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]
        now = self._now()

        with self._connect() as conn:
            conn.execute(
                """UPDATE sync_queue
                   SET retry_count = COALESCE(retry_count, 0) + 1,
                       error_message = ?,
                       last_attempt_at = ?
                   WHERE id = ?""",
                (error_message, now, item.id),
            )
            row = conn.execute(
                "SELECT retry_count FROM sync_queue WHERE id = ?", (item.id,)
            ).fetchone()
            if row is None:
                # Already removed (e.g. discarded while the batch was in flight)
                logger.warning(f"Queue item {item.id} vanished before failure was recorded")
                return FailureOutcome(item_id=item.id, retry_count=item.retry_count, exhausted=False)

            retry_count = row["retry_count"]
            exhausted = retry_count >= self.max_retries
            if exhausted:
                conn.execute(
                    "UPDATE tasks SET sync_status = ?, error_message = ? WHERE id = ?",
                    (
                        SyncStatus.ERROR.value,
                        f"Max retries exceeded: {error_message}",
                        item.task_id,
                    ),
                )
                conn.execute("DELETE FROM sync_queue WHERE id = ?", (item.id,))

        if exhausted:
            logger.warning(
                f"Task {item.task_id} {item.operation.value} exceeded max retries "
                f"({retry_count}/{self.max_retries}); item purged"
            )
        else:
            logger.info(
                f"Sync failure for task {item.task_id} {item.operation.value} "
                f"(retry {retry_count}/{self.max_retries}): {error_message}"
            )
        return FailureOutcome(item_id=item.id, retry_count=retry_count, exhausted=exhausted)

    def remove(self, item_id: str) -> bool:
        """Remove one item after confirmed success."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))
            return cursor.rowcount > 0

    def remove_all_for_task(self, task_id: str) -> int:
        """Remove every queued item for a task."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE task_id = ?", (task_id,))
            return cursor.rowcount

    # === Reads ===

    def pending_items(self, max_retries: Optional[int] = None) -> List[QueueItem]:
        """Items with retry count below the threshold, oldest first.

        Order is enqueue time, then insertion order, which keeps a task's
        create ahead of its later updates.
        """
        threshold = self.max_retries if max_retries is None else max_retries
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT id, task_id, operation, data, created_at,
                          COALESCE(retry_count, 0) AS retry_count,
                          error_message, last_attempt_at
                   FROM sync_queue
                   WHERE COALESCE(retry_count, 0) < ?
                   ORDER BY created_at ASC, rowid ASC""",
                (threshold,),
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def items_for_task(self, task_id: str) -> List[QueueItem]:
        """All queued items for one task, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT id, task_id, operation, data, created_at,
                          COALESCE(retry_count, 0) AS retry_count,
                          error_message, last_attempt_at
                   FROM sync_queue
                   WHERE task_id = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (task_id,),
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def size(self) -> int:
        """Total number of queued items."""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    def pending_count_for_task(self, task_id: str) -> int:
        """Number of items still queued for a task."""
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE task_id = ?", (task_id,)
            ).fetchone()[0]

    def _row_to_item(self, row: sqlite3.Row) -> QueueItem:
        try:
            payload = payload_from_dict(row["operation"], json.loads(row["data"]))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise StorageError(f"Corrupt queue item {row['id']}: {e}") from e
        return QueueItem(
            id=row["id"],
            task_id=row["task_id"],
            operation=Operation(row["operation"]),
            payload=payload,
            queued_at=parse_datetime(row["created_at"]),
            retry_count=row["retry_count"] or 0,
            last_error=row["error_message"],
            last_attempt_at=parse_datetime(row["last_attempt_at"]),
        )
