"""
tasksync CLI - offline-first tasks from the command line.

Usage:
    tasksync task add TITLE [--description D] [--done] [--json]
    tasksync task update ID [--title T] [--description D] [--done|--undone] [--json]
    tasksync task delete ID [--json]
    tasksync task list [--unsynced] [--json]
    tasksync task show ID [--json]
    tasksync sync run [--no-wait] [--json]
    tasksync sync status [--json]
    tasksync queue list [--json]
    tasksync queue discard TASK_ID [--json]
    tasksync conflicts [--limit N] [--json]
"""

import argparse
import logging
import sqlite3
import sys
from pathlib import Path

from tasksync import TaskSync
from tasksync.cli.commands import cmd_conflicts, cmd_queue, cmd_sync, cmd_task
from tasksync.config import load_config
from tasksync.logging_config import setup_tasksync_logging
from tasksync.protocols import TaskSyncError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tasksync",
        description="Offline-first task manager with server sync",
    )
    parser.add_argument("--db", help="Path to the local task database", default=None)
    parser.add_argument("--api-url", dest="api_url", help="Server base URL", default=None)
    parser.add_argument("--log-level", dest="log_level", default="WARNING",
                        help="Log level for the local log file (default: WARNING)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # task
    p_task = subparsers.add_parser("task", help="Create, edit and inspect tasks")
    task_sub = p_task.add_subparsers(dest="task_action", required=True)

    task_add = task_sub.add_parser("add", help="Create a task")
    task_add.add_argument("title", help="Task title")
    task_add.add_argument("--description", "-d", default=None)
    task_add.add_argument("--done", action="store_true", help="Create as completed")
    task_add.add_argument("--json", "-j", action="store_true")

    task_update = task_sub.add_parser("update", help="Edit a task")
    task_update.add_argument("id", help="Task ID")
    task_update.add_argument("--title", "-t", default=None)
    task_update.add_argument("--description", "-d", default=None)
    done_group = task_update.add_mutually_exclusive_group()
    done_group.add_argument("--done", action="store_true", help="Mark completed")
    done_group.add_argument("--undone", action="store_true", help="Mark not completed")
    task_update.add_argument("--json", "-j", action="store_true")

    task_delete = task_sub.add_parser("delete", help="Delete a task")
    task_delete.add_argument("id", help="Task ID")
    task_delete.add_argument("--json", "-j", action="store_true")

    task_list = task_sub.add_parser("list", help="List tasks")
    task_list.add_argument("--unsynced", action="store_true",
                           help="Only tasks that are pending or failed")
    task_list.add_argument("--json", "-j", action="store_true")

    task_show = task_sub.add_parser("show", help="Show one task")
    task_show.add_argument("id", help="Task ID")
    task_show.add_argument("--json", "-j", action="store_true")

    # sync
    p_sync = subparsers.add_parser("sync", help="Sync with the server")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)

    sync_run = sync_sub.add_parser("run", help="Push queued changes to the server")
    sync_run.add_argument("--no-wait", dest="no_wait", action="store_true",
                          help="Fail instead of waiting if a sync is already running")
    sync_run.add_argument("--json", "-j", action="store_true")

    sync_status = sync_sub.add_parser("status", help="Show pending changes, last sync, connection")
    sync_status.add_argument("--json", "-j", action="store_true")

    # queue
    p_queue = subparsers.add_parser("queue", help="Inspect the mutation queue")
    queue_sub = p_queue.add_subparsers(dest="queue_action", required=True)

    queue_list = queue_sub.add_parser("list", help="List queued changes")
    queue_list.add_argument("--json", "-j", action="store_true")

    queue_discard = queue_sub.add_parser("discard", help="Drop all queued changes for a task")
    queue_discard.add_argument("task_id", help="Task ID")
    queue_discard.add_argument("--json", "-j", action="store_true")

    # conflicts
    p_conflicts = subparsers.add_parser("conflicts", help="Show resolved sync conflicts")
    p_conflicts.add_argument("--limit", "-l", type=int, default=20)
    p_conflicts.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_tasksync_logging(args.log_level)
    except OSError as e:
        print(f"Warning: file logging disabled ({e})", file=sys.stderr)

    # Initialize TaskSync with error handling
    try:
        config = load_config(api_base_url=args.api_url, db_path=Path(args.db) if args.db else None)
        ts = TaskSync(config=config)
    except (ValueError, TaskSyncError, sqlite3.Error) as e:
        logger.error(f"Failed to initialize tasksync: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    # Dispatch with error handling
    try:
        if args.command == "task":
            cmd_task(args, ts)
        elif args.command == "sync":
            cmd_sync(args, ts)
        elif args.command == "queue":
            cmd_queue(args, ts)
        elif args.command == "conflicts":
            cmd_conflicts(args, ts)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    except (TaskSyncError, sqlite3.Error) as e:
        logger.error(f"Command failed: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        ts.close()


if __name__ == "__main__":
    main()
