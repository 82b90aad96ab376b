"""Pydantic models for API requests and responses.

The batch wire format lives in ``tasksync.sync.wire`` and is shared with the
client transport.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

# =============================================================================
# Task Models
# =============================================================================


class TaskOut(BaseModel):
    """A task as returned by the API."""
    id: str
    title: str
    description: str | None = None
    completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_deleted: bool = False
    sync_status: str
    server_id: str | None = None
    last_synced_at: datetime | None = None
    error_message: str | None = None


class TaskCreated(BaseModel):
    """Response to a successful create."""
    success: bool = True
    data: TaskOut
    timestamp: datetime


# =============================================================================
# Sync Models
# =============================================================================


class SyncErrorOut(BaseModel):
    task_id: str
    operation: str
    error: str
    timestamp: datetime


class SyncRunResponse(BaseModel):
    """Summary of a sync run triggered through the API."""
    success: bool
    synced_items: int
    failed_items: int
    errors: list[SyncErrorOut] = []
    conflicts: int = 0


class SyncStatusResponse(BaseModel):
    """Queue size, last sync time and connectivity."""
    pending_sync_count: int
    last_sync_timestamp: datetime | None = None
    is_online: bool
    sync_queue_size: int


class ErrorResponse(BaseModel):
    error: str
    timestamp: datetime
    path: str
    details: Any | None = None
