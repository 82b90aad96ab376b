"""Logging helpers for the tasksync backend."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a logger that writes to stderr, configured once per name."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


_batch_logger = get_logger("tasksync.backend.batch")


def log_batch_item(
    client_id: str,
    operation: str,
    task_id: str,
    status: str,
    error: str | None = None,
) -> None:
    """Log the verdict for one received batch item."""
    message = f"BATCH | {client_id} | {operation} | {task_id} | {status}"
    if error:
        message += f" | {error}"
    if status == "error":
        _batch_logger.warning(message)
    else:
        _batch_logger.info(message)
