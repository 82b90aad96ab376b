"""Sync commands for the tasksync CLI."""

import json
import logging
import sys
from typing import TYPE_CHECKING

from tasksync.protocols import SyncInProgressError

if TYPE_CHECKING:
    from tasksync import TaskSync

logger = logging.getLogger(__name__)

# Errors shown in the human-readable summary
MAX_ERRORS_SHOWN = 5


def cmd_sync(args, ts: "TaskSync"):
    """Handle sync subcommands."""
    if args.sync_action == "status":
        status = ts.get_sync_status()
        if args.json:
            status["api_base_url"] = ts.config.api_base_url
            print(json.dumps(status, indent=2, default=str))
            return

        print("Sync Status")
        print("=" * 50)
        print()
        conn_icon = "🟢" if status["is_online"] else "🔴"
        print(f"{conn_icon} Server: {'reachable' if status['is_online'] else 'unreachable'}")
        print(f"   URL: {ts.config.api_base_url}")
        pending = status["pending_sync_count"]
        pending_icon = "🟢" if pending == 0 else "🟡" if pending < 10 else "🟠"
        print(f"{pending_icon} Pending operations: {pending}")
        print(f"   Last sync: {status['last_sync_timestamp'] or 'never'}")

    elif args.sync_action == "run":
        try:
            result = ts.sync(blocking=not args.no_wait)
        except SyncInProgressError as e:
            print(f"✗ {e}")
            sys.exit(1)

        if args.json:
            print(json.dumps(result.to_dict(), indent=2, default=str))
        elif not result.reachable:
            print("✗ Server is not reachable - changes stay queued")
        else:
            print(f"✓ Synced {result.synced_items} changes")
            if result.conflicts:
                print(f"   Resolved {result.conflict_count} conflicts")
            if result.failed_items:
                print(f"⚠️  {result.failed_items} failed:")
                for error in result.errors[:MAX_ERRORS_SHOWN]:
                    print(f"   - {error.task_id[:8]} {error.operation}: {error.error}")
                if len(result.errors) > MAX_ERRORS_SHOWN:
                    print(f"   ... and {len(result.errors) - MAX_ERRORS_SHOWN} more")

        if not result.success:
            sys.exit(1)
