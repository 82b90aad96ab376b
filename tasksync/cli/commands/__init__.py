"""CLI command modules for tasksync.

Each module contains related command handlers dispatched from __main__.py.
"""

from tasksync.cli.commands.queue import cmd_conflicts, cmd_queue
from tasksync.cli.commands.sync import cmd_sync
from tasksync.cli.commands.task import cmd_task

__all__ = ["cmd_conflicts", "cmd_queue", "cmd_sync", "cmd_task"]
