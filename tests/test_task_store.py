"""Tests for SQLiteStorage task operations and sync bookkeeping."""

import os
import sqlite3
import time
from datetime import datetime, timedelta, timezone

import pytest

from tasksync.protocols import TaskStore, ValidationError
from tasksync.storage import SCHEMA_VERSION, SQLiteStorage
from tasksync.types import SyncConflict, SyncStatus, Task, TaskSnapshot


class TestTaskCrud:
    def test_storage_satisfies_task_store_protocol(self, storage):
        assert isinstance(storage, TaskStore)

    def test_create_task_defaults(self, storage):
        task = storage.create_task({"title": "Write report"})

        assert task.id
        assert task.description is None
        assert task.completed is False
        assert task.is_deleted is False
        assert task.sync_status is SyncStatus.PENDING
        assert task.created_at == task.updated_at

        stored = storage.get_task(task.id)
        assert stored.title == "Write report"
        assert stored.sync_status is SyncStatus.PENDING

    def test_create_requires_title(self, storage):
        with pytest.raises(ValidationError):
            storage.create_task({"title": "   "})
        with pytest.raises(ValidationError):
            storage.create_task({"description": "no title"})
        assert storage.list_tasks() == []

    def test_update_stamps_new_updated_at(self, storage):
        task = storage.create_task({"title": "v1"})
        time.sleep(0.001)

        updated = storage.update_task(task.id, {"title": "v2"})

        assert updated.title == "v2"
        assert updated.updated_at > task.updated_at
        assert storage.get_task(task.id).title == "v2"

    def test_update_partial_keeps_other_fields(self, storage):
        task = storage.create_task({"title": "t", "description": "d"})

        storage.update_task(task.id, {"completed": True})

        stored = storage.get_task(task.id)
        assert stored.title == "t"
        assert stored.description == "d"
        assert stored.completed is True

    def test_update_missing_task_returns_none(self, storage):
        assert storage.update_task("nope", {"title": "x"}) is None
        assert storage.get_pending_sync_count() == 0

    def test_update_rejects_empty_body(self, storage):
        task = storage.create_task({"title": "t"})
        with pytest.raises(ValidationError, match="cannot be empty"):
            storage.update_task(task.id, {})

    def test_update_revives_error_task_to_pending(self, storage):
        task = storage.create_task({"title": "t"})
        storage.mark_task_error(task.id, "Max retries exceeded: boom")

        storage.update_task(task.id, {"title": "retry me"})

        stored = storage.get_task(task.id)
        assert stored.sync_status is SyncStatus.PENDING
        assert stored.error_message is None

    def test_soft_delete_hides_task_but_keeps_it_addressable(self, storage):
        task = storage.create_task({"title": "t"})

        assert storage.delete_task(task.id) is True

        assert storage.get_task(task.id) is None
        assert storage.list_tasks() == []
        deleted = storage.get_task(task.id, include_deleted=True)
        assert deleted.is_deleted is True
        assert deleted.sync_status is SyncStatus.PENDING

    def test_delete_twice_returns_false(self, storage):
        task = storage.create_task({"title": "t"})
        storage.delete_task(task.id)
        assert storage.delete_task(task.id) is False
        assert storage.get_pending_sync_count() == 2

    def test_update_deleted_task_returns_none(self, storage):
        task = storage.create_task({"title": "t"})
        storage.delete_task(task.id)
        assert storage.update_task(task.id, {"title": "zombie"}) is None

    def test_list_tasks_oldest_first(self, storage):
        a = storage.create_task({"title": "a"})
        b = storage.create_task({"title": "b"})
        assert [t.id for t in storage.list_tasks()] == [a.id, b.id]

    def test_tasks_needing_sync(self, storage):
        pending = storage.create_task({"title": "pending"})
        synced = storage.create_task({"title": "synced"})
        failed = storage.create_task({"title": "failed"})
        storage.confirm_item(storage.queue.items_for_task(synced.id)[0].id, synced.id, server_id="srv-1")
        storage.mark_task_error(failed.id, "nope")

        ids = {t.id for t in storage.get_tasks_needing_sync()}
        assert ids == {pending.id, failed.id}


class TestSyncApplication:
    def _create_item(self, storage, title="t"):
        task = storage.create_task({"title": title})
        return task, storage.queue.pending_items()[-1]

    def test_confirm_item_marks_synced(self, storage):
        task, item = self._create_item(storage)
        when = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        still_pending = storage.confirm_item(item.id, task.id, server_id="srv-9", synced_at=when)

        assert still_pending is False
        assert storage.queue.size() == 0
        stored = storage.get_task(task.id)
        assert stored.sync_status is SyncStatus.SYNCED
        assert stored.server_id == "srv-9"
        assert stored.last_synced_at == when

    def test_confirm_item_keeps_pending_while_items_remain(self, storage):
        task, item = self._create_item(storage)
        storage.update_task(task.id, {"title": "v2"})

        assert storage.confirm_item(item.id, task.id, server_id="srv-1") is True

        stored = storage.get_task(task.id)
        assert stored.sync_status is SyncStatus.PENDING
        assert stored.server_id == "srv-1"
        assert stored.last_synced_at is not None
        assert storage.queue.pending_count_for_task(task.id) == 1

    def test_confirm_item_keeps_existing_server_id(self, storage):
        task, item = self._create_item(storage)
        storage.confirm_item(item.id, task.id, server_id="srv-1")
        update = storage.update_task(task.id, {"title": "v2"})
        assert update is not None

        storage.confirm_item(storage.queue.pending_items()[0].id, task.id)

        assert storage.get_task(task.id).server_id == "srv-1"

    def test_confirm_item_applies_server_version_without_queueing(self, storage):
        task, item = self._create_item(storage, "local")
        server_time = task.updated_at + timedelta(hours=1)
        server = Task(
            id=task.id,
            title="server",
            description="from server",
            completed=True,
            updated_at=server_time,
            server_id="srv-2",
        )

        storage.confirm_item(item.id, task.id, server_version=server)

        stored = storage.get_task(task.id)
        assert stored.title == "server"
        assert stored.description == "from server"
        assert stored.completed is True
        assert stored.updated_at == server_time
        assert stored.sync_status is SyncStatus.SYNCED
        assert stored.server_id == "srv-2"
        assert storage.get_pending_sync_count() == 0

    def test_server_version_not_applied_over_queued_local_edit(self, storage):
        task, item = self._create_item(storage, "local")
        storage.update_task(task.id, {"title": "newer local edit"})
        server = Task(
            id=task.id,
            title="server",
            updated_at=task.updated_at + timedelta(hours=1),
        )

        assert storage.confirm_item(item.id, task.id, server_id="srv-3", server_version=server) is True

        stored = storage.get_task(task.id)
        assert stored.title == "newer local edit"
        assert stored.sync_status is SyncStatus.PENDING
        assert stored.server_id == "srv-3"

    def test_confirm_item_is_one_transaction(self, storage):
        task, item = self._create_item(storage)
        with storage._connect() as conn:
            conn.execute("DROP TABLE tasks")
            conn.execute("CREATE TABLE tasks (id TEXT PRIMARY KEY)")

        with pytest.raises(sqlite3.OperationalError):
            storage.confirm_item(item.id, task.id, server_id="srv")

        assert storage.queue.size() == 1

    def test_upsert_remote_task_inserts_synced_row(self, storage):
        snapshot = TaskSnapshot(id="remote-1", title="from client")

        task = storage.upsert_remote_task(snapshot, server_id="srv-new")

        assert task.sync_status is SyncStatus.SYNCED
        assert task.server_id == "srv-new"
        assert storage.get_pending_sync_count() == 0

    def test_upsert_remote_task_keeps_first_server_id(self, storage):
        storage.upsert_remote_task(TaskSnapshot(id="r1", title="v1"), server_id="srv-a")
        task = storage.upsert_remote_task(TaskSnapshot(id="r1", title="v2"), server_id="srv-b")
        assert task.title == "v2"
        assert task.server_id == "srv-a"

    def test_soft_delete_remote(self, storage):
        storage.upsert_remote_task(TaskSnapshot(id="r1", title="v1"), server_id="srv-a")

        deleted = storage.soft_delete_remote("r1")

        assert deleted.is_deleted is True
        assert storage.soft_delete_remote("unknown") is None
        assert storage.get_pending_sync_count() == 0


class TestSyncMeta:
    def test_last_sync_time_none_initially(self, storage):
        assert storage.get_last_sync_time() is None

    def test_set_and_get_last_sync_time(self, storage):
        storage.set_last_sync_time("2025-06-01T12:00:00+00:00")
        assert storage.get_last_sync_time() == datetime(2025, 6, 1, 12, tzinfo=timezone.utc)

    def test_last_sync_time_falls_back_to_task_stamps(self, storage):
        task = storage.create_task({"title": "t"})
        when = datetime(2025, 3, 1, tzinfo=timezone.utc)
        storage.confirm_item(storage.queue.pending_items()[0].id, task.id, synced_at=when)

        assert storage.get_last_sync_time() == when


class TestConflictHistory:
    def _conflict(self, diff_hash="abc", conflict_id="c1"):
        return SyncConflict(
            id=conflict_id,
            task_id="t1",
            local_version={"title": "local"},
            server_version={"title": "server"},
            resolution="server_wins",
            resolved_at=datetime.now(timezone.utc),
            policy_decision="newer_server_timestamp",
            diff_hash=diff_hash,
        )

    def test_save_and_list(self, storage):
        storage.save_sync_conflict(self._conflict())

        conflicts = storage.get_sync_conflicts()
        assert len(conflicts) == 1
        assert conflicts[0].local_version == {"title": "local"}
        assert conflicts[0].policy_decision == "newer_server_timestamp"

    def test_dedup_by_hash(self, storage):
        first = storage.save_sync_conflict(self._conflict(conflict_id="c1"))
        second = storage.save_sync_conflict(self._conflict(conflict_id="c2"))

        assert first == second == "c1"
        assert len(storage.get_sync_conflicts()) == 1

    def test_clear(self, storage):
        storage.save_sync_conflict(self._conflict(diff_hash="a", conflict_id="c1"))
        storage.save_sync_conflict(self._conflict(diff_hash="b", conflict_id="c2"))
        assert storage.clear_sync_conflicts() == 2
        assert storage.get_sync_conflicts() == []


class TestSchema:
    def test_schema_version_recorded(self, storage):
        with storage._connect() as conn:
            version = conn.execute("SELECT version FROM schema_version").fetchone()[0]
        assert version == SCHEMA_VERSION

    def test_db_file_is_owner_only(self, temp_db):
        SQLiteStorage(temp_db)
        assert oct(os.stat(temp_db).st_mode & 0o777) == "0o600"

    def test_migrates_old_tasks_table(self, temp_db):
        conn = sqlite3.connect(temp_db)
        conn.execute(
            """CREATE TABLE tasks (
                id TEXT PRIMARY KEY, title TEXT NOT NULL, description TEXT,
                completed INTEGER DEFAULT 0, created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL, is_deleted INTEGER DEFAULT 0,
                sync_status TEXT DEFAULT 'pending', server_id TEXT, last_synced_at TEXT
            )"""
        )
        conn.commit()
        conn.close()

        storage = SQLiteStorage(temp_db)
        task = storage.create_task({"title": "after migration"})
        storage.mark_task_error(task.id, "boom")
        assert storage.get_task(task.id).error_message == "boom"

    def test_reopen_keeps_data(self, temp_db):
        first = SQLiteStorage(temp_db)
        task = first.create_task({"title": "persisted"})

        second = SQLiteStorage(temp_db)
        assert second.get_task(task.id).title == "persisted"
        assert second.get_pending_sync_count() == 1
