"""Queue inspection and conflict history commands for the tasksync CLI."""

import json
import logging
import sys
from typing import TYPE_CHECKING

from tasksync.types import format_datetime

if TYPE_CHECKING:
    from tasksync import TaskSync

logger = logging.getLogger(__name__)


def cmd_queue(args, ts: "TaskSync"):
    """Handle queue subcommands."""
    if args.queue_action == "list":
        items = ts.get_queue()
        if args.json:
            print(
                json.dumps(
                    [
                        {
                            "id": item.id,
                            "task_id": item.task_id,
                            "operation": item.operation.value,
                            "queued_at": format_datetime(item.queued_at),
                            "retry_count": item.retry_count,
                            "last_error": item.last_error,
                        }
                        for item in items
                    ],
                    indent=2,
                )
            )
            return
        if not items:
            print("✓ Queue is empty")
            return
        print(f"{len(items)} pending changes:")
        for item in items:
            line = f"  {item.task_id[:8]} {item.operation.value:<6} retries={item.retry_count}"
            if item.last_error:
                line += f"  last error: {item.last_error}"
            print(line)

    elif args.queue_action == "discard":
        removed = ts.discard_pending(args.task_id)
        if args.json:
            print(json.dumps({"task_id": args.task_id, "removed": removed}))
        elif removed:
            print(f"✓ Discarded {removed} pending changes for {args.task_id[:8]}")
        else:
            print(f"No pending changes for {args.task_id}")
            sys.exit(1)


def cmd_conflicts(args, ts: "TaskSync"):
    """Show recent sync conflict history."""
    conflicts = ts.get_sync_conflicts(limit=args.limit)
    if args.json:
        print(
            json.dumps(
                [
                    {
                        "id": c.id,
                        "task_id": c.task_id,
                        "resolution": c.resolution,
                        "policy_decision": c.policy_decision,
                        "resolved_at": format_datetime(c.resolved_at),
                        "local_version": c.local_version,
                        "server_version": c.server_version,
                    }
                    for c in conflicts
                ],
                indent=2,
                default=str,
            )
        )
        return
    if not conflicts:
        print("No sync conflicts recorded.")
        return
    for c in conflicts:
        local_title = c.local_version.get("title", "")
        server_title = c.server_version.get("title", "")
        print(f"{format_datetime(c.resolved_at)}  {c.task_id[:8]}  {c.resolution} ({c.policy_decision})")
        print(f"    local:  {local_title}")
        print(f"    server: {server_title}")
