"""Filesystem helpers for tasksync."""

import os
from pathlib import Path


def get_tasksync_home() -> Path:
    """Get the tasksync data directory.

    ``TASKSYNC_DATA_DIR`` overrides the default ``~/.tasksync``.
    """
    override = os.environ.get("TASKSYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".tasksync"
