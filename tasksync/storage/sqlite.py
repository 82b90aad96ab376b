"""SQLite storage backend for tasksync.

Local-first task storage with:
- SQLite for task records
- A durable mutation queue fed by every create/update/delete
- Sync metadata and conflict history for the sync engine
"""

import contextlib
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from tasksync.protocols import MutationQueue, StorageError
from tasksync.types import (
    CreatePayload,
    DeletePayload,
    Operation,
    SyncConflict,
    SyncStatus,
    Task,
    TaskSnapshot,
    UpdatePayload,
    format_datetime,
    parse_datetime,
    utc_now,
)
from tasksync.utils import get_tasksync_home
from tasksync.validation import validate_task_create, validate_task_update

from .queue import DEFAULT_MAX_RETRIES, SQLiteMutationQueue
from .schema import init_db

logger = logging.getLogger(__name__)

LAST_SYNC_META_KEY = "last_sync_time"


class SQLiteStorage:
    """SQLite-based task store.

    Every task mutation writes the task row and appends a queue item in one
    transaction. The queue instance is shared with the sync orchestrator
    (``storage.queue``); pass one in to substitute another implementation.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        queue: Optional[MutationQueue] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.db_path = Path(db_path) if db_path is not None else get_tasksync_home() / "tasks.db"
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create database directory {self.db_path.parent}: {e}")

        self.queue: MutationQueue = queue or SQLiteMutationQueue(
            connect_fn=self._connect,
            now_fn=self._now,
            max_retries=max_retries,
        )

        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a database connection.

        Prefer the _connect() context manager, which handles commit/rollback
        and close.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self, immediate: bool = False):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases

        With ``immediate`` the write lock is taken up front, so reads made
        inside the transaction cannot be invalidated by another writer.
        """
        conn = self._get_conn()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self):
        """Close any resources.

        Connections are per-operation, so this exists for API symmetry.
        """
        pass

    def _init_db(self):
        with self._connect() as conn:
            init_db(conn, self.db_path)

    def _now(self) -> str:
        return utc_now()

    # === Task CRUD ===

    def create_task(self, data: Dict[str, Any]) -> Task:
        """Create a task and queue its ``create`` mutation."""
        fields = validate_task_create(data)
        now = self._now()
        task = Task(
            id=str(uuid.uuid4()),
            title=fields["title"],
            description=fields["description"],
            completed=fields["completed"],
            created_at=parse_datetime(now),
            updated_at=parse_datetime(now),
            is_deleted=False,
            sync_status=SyncStatus.PENDING,
        )

        with self._connect() as conn:
            conn.execute(
                """INSERT INTO tasks
                   (id, title, description, completed, created_at, updated_at,
                    is_deleted, sync_status)
                   VALUES (?, ?, ?, ?, ?, ?, 0, ?)""",
                (
                    task.id,
                    task.title,
                    task.description,
                    int(task.completed),
                    now,
                    now,
                    SyncStatus.PENDING.value,
                ),
            )
            self.queue.enqueue(task.id, Operation.CREATE, CreatePayload(task.snapshot()), conn=conn)

        logger.debug(f"Created task {task.id}")
        return task

    def update_task(self, task_id: str, data: Dict[str, Any]) -> Optional[Task]:
        """Apply a partial update and queue an ``update`` mutation.

        Returns None if the task does not exist or is deleted.
        """
        updates = validate_task_update(data)

        with self._connect(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND is_deleted = 0", (task_id,)
            ).fetchone()
            if row is None:
                return None

            task = self._row_to_task(row)
            for key, value in updates.items():
                setattr(task, key, value)
            now = self._now()
            task.updated_at = parse_datetime(now)
            task.sync_status = SyncStatus.PENDING
            task.error_message = None

            conn.execute(
                """UPDATE tasks
                   SET title = ?, description = ?, completed = ?, updated_at = ?,
                       sync_status = ?, error_message = NULL
                   WHERE id = ?""",
                (
                    task.title,
                    task.description,
                    int(task.completed),
                    now,
                    SyncStatus.PENDING.value,
                    task_id,
                ),
            )
            self.queue.enqueue(task_id, Operation.UPDATE, UpdatePayload(task.snapshot()), conn=conn)

        return task

    def delete_task(self, task_id: str) -> bool:
        """Soft delete a task and queue a ``delete`` mutation."""
        with self._connect(immediate=True) as conn:
            row = conn.execute(
                "SELECT id FROM tasks WHERE id = ? AND is_deleted = 0", (task_id,)
            ).fetchone()
            if row is None:
                return False

            conn.execute(
                """UPDATE tasks
                   SET is_deleted = 1, updated_at = ?, sync_status = ?, error_message = NULL
                   WHERE id = ?""",
                (self._now(), SyncStatus.PENDING.value, task_id),
            )
            self.queue.enqueue(task_id, Operation.DELETE, DeletePayload(task_id), conn=conn)

        return True

    def get_task(self, task_id: str, include_deleted: bool = False) -> Optional[Task]:
        """Get a task by id. Soft-deleted tasks only with ``include_deleted``."""
        query = "SELECT * FROM tasks WHERE id = ?"
        if not include_deleted:
            query += " AND is_deleted = 0"
        with self._connect() as conn:
            row = conn.execute(query, (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self) -> List[Task]:
        """All non-deleted tasks, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE is_deleted = 0 ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def get_tasks_needing_sync(self) -> List[Task]:
        """Tasks whose latest change is unconfirmed (``pending`` or ``error``)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE sync_status IN (?, ?) ORDER BY updated_at",
                (SyncStatus.PENDING.value, SyncStatus.ERROR.value),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def mark_task_error(self, task_id: str, message: str) -> bool:
        """Mark a task permanently failed until its next mutation."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET sync_status = ?, error_message = ? WHERE id = ?",
                (SyncStatus.ERROR.value, message, task_id),
            )
            return cursor.rowcount > 0

    # === Sync Application ===

    def confirm_item(
        self,
        item_id: str,
        task_id: str,
        server_id: Optional[str] = None,
        synced_at: Optional[datetime] = None,
        server_version: Optional[Task] = None,
    ) -> bool:
        """Apply a confirmed queue item in one transaction.

        Removes the item, counts what is still queued for the task and stamps
        the task. The task becomes ``synced`` only when nothing else is
        queued for it; otherwise it stays ``pending`` and just records the
        server id and sync time.

        ``server_version`` is a winning server copy from a conflict. Its
        fields replace the local ones only when no later local mutation is
        queued, so an edit made while the batch was in flight is kept.

        Returns True if the task is still pending.
        """
        synced_at_str = format_datetime(synced_at) or self._now()
        if server_version is not None:
            server_id = server_id or server_version.server_id

        with self._connect(immediate=True) as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))
            remaining = self._count_queued(conn, task_id)
            still_pending = remaining > 0
            status = SyncStatus.PENDING if still_pending else SyncStatus.SYNCED

            if server_version is not None and not still_pending:
                conn.execute(
                    """UPDATE tasks
                       SET title = ?, description = ?, completed = ?, updated_at = ?,
                           is_deleted = ?, sync_status = ?, last_synced_at = ?,
                           server_id = COALESCE(?, server_id), error_message = NULL
                       WHERE id = ?""",
                    (
                        server_version.title,
                        server_version.description,
                        int(server_version.completed),
                        format_datetime(server_version.updated_at) or self._now(),
                        int(server_version.is_deleted),
                        status.value,
                        synced_at_str,
                        server_id,
                        task_id,
                    ),
                )
            else:
                if server_version is not None:
                    logger.debug(
                        f"Task {task_id} has {remaining} newer local changes queued; "
                        f"server copy not applied"
                    )
                conn.execute(
                    """UPDATE tasks
                       SET sync_status = ?, last_synced_at = ?,
                           server_id = COALESCE(?, server_id), error_message = NULL
                       WHERE id = ?""",
                    (status.value, synced_at_str, server_id, task_id),
                )

        return still_pending

    def _count_queued(self, conn: sqlite3.Connection, task_id: str) -> int:
        return conn.execute(
            "SELECT COUNT(*) FROM sync_queue WHERE task_id = ?", (task_id,)
        ).fetchone()[0]

    # === Remote-role Writes (no queueing) ===

    def upsert_remote_task(self, snapshot: TaskSnapshot, server_id: Optional[str] = None) -> Task:
        """Insert or overwrite a task received from a peer.

        Used by the batch-receive endpoint. The row is stored as ``synced``
        and keeps any server id it already had.
        """
        now = self._now()
        created_at = format_datetime(snapshot.created_at) or now
        updated_at = format_datetime(snapshot.updated_at) or now
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO tasks
                   (id, title, description, completed, created_at, updated_at,
                    is_deleted, sync_status, server_id, last_synced_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       title = excluded.title,
                       description = excluded.description,
                       completed = excluded.completed,
                       updated_at = excluded.updated_at,
                       is_deleted = excluded.is_deleted,
                       sync_status = excluded.sync_status,
                       server_id = COALESCE(tasks.server_id, excluded.server_id),
                       last_synced_at = excluded.last_synced_at""",
                (
                    snapshot.id,
                    snapshot.title,
                    snapshot.description,
                    int(snapshot.completed),
                    created_at,
                    updated_at,
                    int(snapshot.is_deleted),
                    SyncStatus.SYNCED.value,
                    server_id,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (snapshot.id,)).fetchone()
        return self._row_to_task(row)

    def soft_delete_remote(self, task_id: str) -> Optional[Task]:
        """Soft delete a task on behalf of a peer. Returns None if unknown."""
        now = self._now()
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE tasks
                   SET is_deleted = 1, updated_at = ?, sync_status = ?, last_synced_at = ?
                   WHERE id = ?""",
                (now, SyncStatus.SYNCED.value, now, task_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row)

    # === Sync Metadata ===

    def _get_sync_meta(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _set_sync_meta(self, key: str, value: str):
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, self._now()),
            )

    def get_last_sync_time(self) -> Optional[datetime]:
        """Timestamp of the last sync run that confirmed anything.

        Falls back to the newest ``last_synced_at`` of any task.
        """
        value = self._get_sync_meta(LAST_SYNC_META_KEY)
        if value:
            return parse_datetime(value)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(last_synced_at) AS last_sync FROM tasks WHERE last_synced_at IS NOT NULL"
            ).fetchone()
        return parse_datetime(row["last_sync"]) if row and row["last_sync"] else None

    def set_last_sync_time(self, when: Optional[str] = None) -> None:
        self._set_sync_meta(LAST_SYNC_META_KEY, when or self._now())

    def get_pending_sync_count(self) -> int:
        """Number of queued mutations."""
        return self.queue.size()

    # === Conflict History ===

    def save_sync_conflict(self, conflict: SyncConflict) -> str:
        """Save a sync conflict record. Deduplicates by diff_hash when available."""
        with self._connect() as conn:
            if conflict.diff_hash:
                existing = conn.execute(
                    "SELECT id FROM sync_conflicts WHERE diff_hash = ?", (conflict.diff_hash,)
                ).fetchone()
                if existing:
                    return existing["id"]

            conn.execute(
                """INSERT INTO sync_conflicts
                   (id, task_id, local_version, server_version, resolution,
                    resolved_at, policy_decision, diff_hash)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conflict.id,
                    conflict.task_id,
                    json.dumps(conflict.local_version, default=str),
                    json.dumps(conflict.server_version, default=str),
                    conflict.resolution,
                    format_datetime(conflict.resolved_at),
                    conflict.policy_decision,
                    conflict.diff_hash,
                ),
            )
        return conflict.id

    def get_sync_conflicts(self, limit: int = 100) -> List[SyncConflict]:
        """Recent sync conflict history, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT id, task_id, local_version, server_version, resolution,
                          resolved_at, policy_decision, diff_hash
                   FROM sync_conflicts
                   ORDER BY resolved_at DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()

        return [
            SyncConflict(
                id=row["id"],
                task_id=row["task_id"],
                local_version=json.loads(row["local_version"]),
                server_version=json.loads(row["server_version"]),
                resolution=row["resolution"],
                resolved_at=parse_datetime(row["resolved_at"]) or datetime.now(timezone.utc),
                policy_decision=row["policy_decision"],
                diff_hash=row["diff_hash"],
            )
            for row in rows
        ]

    def clear_sync_conflicts(self, before: Optional[datetime] = None) -> int:
        """Clear sync conflict history."""
        with self._connect() as conn:
            if before:
                cursor = conn.execute(
                    "DELETE FROM sync_conflicts WHERE resolved_at < ?", (before.isoformat(),)
                )
            else:
                cursor = conn.execute("DELETE FROM sync_conflicts")
            return cursor.rowcount

    # === Row Conversion ===

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            completed=bool(row["completed"]),
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            is_deleted=bool(row["is_deleted"]),
            sync_status=SyncStatus(row["sync_status"] or SyncStatus.PENDING.value),
            server_id=row["server_id"],
            last_synced_at=parse_datetime(row["last_synced_at"]),
            error_message=row["error_message"],
        )
