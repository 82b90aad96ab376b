"""Task commands for the tasksync CLI."""

import json
import logging
import sys
from typing import TYPE_CHECKING

from tasksync.types import SyncStatus, Task

if TYPE_CHECKING:
    from tasksync import TaskSync

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    SyncStatus.PENDING: "🟡",
    SyncStatus.SYNCED: "🟢",
    SyncStatus.ERROR: "🔴",
}


def format_task_line(task: Task) -> str:
    check = "x" if task.completed else " "
    icon = STATUS_ICONS.get(task.sync_status, "?")
    return f"[{check}] {icon} {task.id[:8]}  {task.title}"


def _print_task(task: Task) -> None:
    print(format_task_line(task))
    if task.description:
        print(f"    {task.description}")
    print(f"    status: {task.sync_status.value}")
    if task.server_id:
        print(f"    server id: {task.server_id}")
    if task.last_synced_at:
        print(f"    last synced: {task.last_synced_at.isoformat()}")
    if task.error_message:
        print(f"    error: {task.error_message}")


def _update_fields(args) -> dict:
    data = {}
    if args.title is not None:
        data["title"] = args.title
    if args.description is not None:
        data["description"] = args.description
    if args.done:
        data["completed"] = True
    elif args.undone:
        data["completed"] = False
    return data


def cmd_task(args, ts: "TaskSync"):
    """Handle task subcommands."""
    if args.task_action == "add":
        data = {"title": args.title, "completed": bool(args.done)}
        if args.description is not None:
            data["description"] = args.description
        task = ts.create_task(data)
        if args.json:
            print(json.dumps(task.to_dict(), indent=2, default=str))
        else:
            print(f"✓ Created task {task.id[:8]} (queued for sync)")

    elif args.task_action == "update":
        task = ts.update_task(args.id, _update_fields(args))
        if task is None:
            print(f"✗ Task {args.id} not found")
            sys.exit(1)
        if args.json:
            print(json.dumps(task.to_dict(), indent=2, default=str))
        else:
            print(f"✓ Updated task {task.id[:8]} (queued for sync)")

    elif args.task_action == "delete":
        if not ts.delete_task(args.id):
            print(f"✗ Task {args.id} not found")
            sys.exit(1)
        if args.json:
            print(json.dumps({"deleted": args.id}))
        else:
            print(f"✓ Deleted task {args.id[:8]} (queued for sync)")

    elif args.task_action == "list":
        tasks = ts.get_tasks_needing_sync() if args.unsynced else ts.list_tasks()
        if args.json:
            print(json.dumps([t.to_dict() for t in tasks], indent=2, default=str))
            return
        if not tasks:
            print("No tasks.")
            return
        for task in tasks:
            print(format_task_line(task))

    elif args.task_action == "show":
        task = ts.get_task(args.id)
        if task is None:
            print(f"✗ Task {args.id} not found")
            sys.exit(1)
        if args.json:
            print(json.dumps(task.to_dict(), indent=2, default=str))
        else:
            _print_task(task)
