"""tasksync storage backends.

Local-first storage using SQLite: task records, the mutation queue, sync
metadata and conflict history.
"""

from .queue import DEFAULT_MAX_RETRIES, MAX_ERROR_LENGTH, SQLiteMutationQueue
from .schema import SCHEMA_VERSION, init_db
from .sqlite import SQLiteStorage

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "MAX_ERROR_LENGTH",
    "SCHEMA_VERSION",
    "SQLiteMutationQueue",
    "SQLiteStorage",
    "init_db",
]
