"""Logging setup for tasksync.

Two streams:
- ``local-YYYY-MM-DD.log``: the ``tasksync`` logger hierarchy
- ``sync-events-YYYY-MM-DD.log``: one line per sync event (audit trail)

Both live under ``<data dir>/logs``.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from tasksync.utils import get_tasksync_home

if TYPE_CHECKING:
    from tasksync.types import SyncResult

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def get_log_dir() -> Path:
    """Get (and create) the log directory."""
    log_dir = get_tasksync_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_tasksync_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``tasksync`` logger.

    Adds a daily file handler and, at DEBUG, a console handler. Calling this
    more than once does not add duplicate handlers. Unknown levels fall back
    to INFO.
    """
    level_name = (level or "INFO").upper()
    if level_name not in _VALID_LEVELS:
        level_name = "INFO"
    log_level = getattr(logging, level_name)

    logger = logging.getLogger("tasksync")
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_file = get_log_dir() / f"local-{_today()}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if log_level == logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def log_sync_event(event_type: str, details: str) -> None:
    """Append one line to the sync event log."""
    event_file = get_log_dir() / f"sync-events-{_today()}.log"
    timestamp = datetime.now(timezone.utc).isoformat()
    with open(event_file, "a", encoding="utf-8") as f:
        f.write(f"{timestamp} | {event_type} | {details}\n")


def log_sync(result: "SyncResult", duration_ms: Optional[float] = None) -> None:
    """Record the outcome of a sync run."""
    details = (
        f"success={result.success}, synced={result.synced_items}, "
        f"failed={result.failed_items}, conflicts={result.conflict_count}"
    )
    if duration_ms is not None:
        details += f", duration_ms={duration_ms:.0f}"
    log_sync_event("sync", details)


def log_conflict(task_id: str, winner: str, policy_decision: str) -> None:
    """Record a conflict resolution."""
    log_sync_event("conflict", f"task={task_id[:8]}, winner={winner}, policy={policy_decision}")
