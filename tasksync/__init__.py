"""
tasksync - offline-first task management.

Local task storage with a durable mutation queue and a sync engine that
reconciles it with a server.
"""

from .core import TaskSync

try:
    from importlib.metadata import version

    __version__ = version("tasksync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["TaskSync"]
