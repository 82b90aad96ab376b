"""Tests for the tasksync CLI entry point and command handlers."""

import json
from unittest.mock import patch

import pytest

from tasksync.cli.__main__ import build_parser, main
from tasksync.storage import SQLiteStorage
from tasksync.sync import HttpBatchTransport
from tasksync.types import BatchItemVerdict, BatchResponse, SyncStatus, VerdictStatus


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def run(db, capsys):
    """Invoke the CLI against the temp database and return stdout."""

    def _run(*argv):
        main(["--db", db, *argv])
        return capsys.readouterr().out

    return _run


def confirm_all(items, client_timestamp):
    return BatchResponse(
        processed_items=[
            BatchItemVerdict(client_id=i.id, status=VerdictStatus.SUCCESS, server_id="srv")
            for i in items
        ]
    )


def add_task(run, title="Buy milk"):
    return json.loads(run("task", "add", title, "--json"))["id"]


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_done_and_undone_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["task", "update", "x", "--done", "--undone"])


class TestTaskCommands:
    def test_add_and_show(self, run):
        out = run("task", "add", "Buy milk", "-d", "two liters")
        assert "✓ Created task" in out

        task_id = json.loads(run("task", "list", "--json"))[0]["id"]
        shown = run("task", "show", task_id)
        assert "Buy milk" in shown
        assert "two liters" in shown
        assert "status: pending" in shown

    def test_update(self, run, db):
        task_id = add_task(run)

        out = run("task", "update", task_id, "--title", "Buy oat milk", "--done")

        assert "✓ Updated task" in out
        task = SQLiteStorage(db).get_task(task_id)
        assert task.title == "Buy oat milk"
        assert task.completed is True

    def test_update_missing_task(self, run, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run("task", "update", "missing", "--title", "x")
        assert exc_info.value.code == 1
        assert "not found" in capsys.readouterr().out

    def test_delete(self, run):
        task_id = add_task(run)
        assert "✓ Deleted task" in run("task", "delete", task_id)
        assert run("task", "list") == "No tasks.\n"

    def test_invalid_input_exits(self, run, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run("task", "add", "   ")
        assert exc_info.value.code == 1
        assert "cannot be empty" in capsys.readouterr().err

    def test_list_unsynced(self, run, db):
        synced_id = add_task(run, "synced")
        pending_id = add_task(run, "pending")
        storage = SQLiteStorage(db)
        item = storage.queue.items_for_task(synced_id)[0]
        storage.confirm_item(item.id, synced_id, server_id="srv")

        ids = [t["id"] for t in json.loads(run("task", "list", "--unsynced", "--json"))]

        assert ids == [pending_id]


class TestSyncCommands:
    def test_status_offline(self, run):
        add_task(run)
        with patch.object(HttpBatchTransport, "check_health", return_value=False):
            status = json.loads(run("sync", "status", "--json"))

        assert status["pending_sync_count"] == 1
        assert status["is_online"] is False
        assert status["last_sync_timestamp"] is None

    def test_status_human(self, run):
        with patch.object(HttpBatchTransport, "check_health", return_value=True):
            out = run("sync", "status")
        assert "Sync Status" in out
        assert "Server: reachable" in out
        assert "Last sync: never" in out

    def test_run_unreachable(self, run, capsys):
        add_task(run)
        with patch.object(HttpBatchTransport, "check_health", return_value=False):
            with pytest.raises(SystemExit) as exc_info:
                run("sync", "run")

        assert exc_info.value.code == 1
        assert "not reachable" in capsys.readouterr().out
        assert len(json.loads(run("queue", "list", "--json"))) == 1

    def test_run_success(self, run, db):
        task_id = add_task(run)
        with patch.object(HttpBatchTransport, "check_health", return_value=True), patch.object(
            HttpBatchTransport, "send_batch", side_effect=confirm_all
        ):
            out = run("sync", "run")

        assert "✓ Synced 1 changes" in out
        task = SQLiteStorage(db).get_task(task_id)
        assert task.sync_status is SyncStatus.SYNCED
        assert task.server_id == "srv"
        assert run("queue", "list") == "✓ Queue is empty\n"

    def test_run_json(self, run):
        add_task(run)
        with patch.object(HttpBatchTransport, "check_health", return_value=True), patch.object(
            HttpBatchTransport, "send_batch", side_effect=confirm_all
        ):
            result = json.loads(run("sync", "run", "--json"))

        assert result["success"] is True
        assert result["synced_items"] == 1
        assert result["errors"] == []


class TestQueueCommands:
    def test_list(self, run):
        task_id = add_task(run)
        run("task", "update", task_id, "--done")

        items = json.loads(run("queue", "list", "--json"))

        assert [i["operation"] for i in items] == ["create", "update"]
        assert all(i["retry_count"] == 0 for i in items)

    def test_discard(self, run, db):
        task_id = add_task(run)

        out = run("queue", "discard", task_id)

        assert "Discarded 1 pending changes" in out
        task = SQLiteStorage(db).get_task(task_id)
        assert task.sync_status is SyncStatus.ERROR
        assert task.error_message == "Pending changes discarded"

    def test_discard_nothing(self, run):
        with pytest.raises(SystemExit) as exc_info:
            run("queue", "discard", "nope")
        assert exc_info.value.code == 1

    def test_conflicts_empty(self, run):
        assert run("conflicts") == "No sync conflicts recorded.\n"
        assert json.loads(run("conflicts", "--json")) == []
