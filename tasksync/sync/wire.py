"""Pydantic models for the batch sync wire format.

Shared by the HTTP transport (client role) and the ``/api/batch`` endpoint
(server role) so both sides validate the same JSON.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from tasksync.types import (
    BatchItemVerdict,
    BatchResponse,
    QueueItem,
    VerdictStatus,
)

# =============================================================================
# Request
# =============================================================================


class SyncItem(BaseModel):
    """One queued mutation as sent to the server."""

    client_id: Optional[str] = None  # Queue item id; echoed back in the verdict
    task_id: str = Field(..., min_length=1)
    operation: Literal["create", "update", "delete"]
    data: Dict[str, Any] = Field(default_factory=dict)


class BatchSyncRequest(BaseModel):
    """Request body of ``POST {base}/batch``."""

    items: List[SyncItem]
    client_timestamp: datetime


# =============================================================================
# Response
# =============================================================================


class ProcessedItem(BaseModel):
    """Per-item verdict."""

    client_id: str
    server_id: Optional[str] = None
    status: Literal["success", "conflict", "error"]
    resolved_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class BatchSyncResponse(BaseModel):
    """Response body of ``POST {base}/batch``."""

    processed_items: List[ProcessedItem] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response body of ``GET {base}/health``."""

    status: str
    timestamp: datetime


# =============================================================================
# Conversion
# =============================================================================


def build_batch_request(items: Sequence[QueueItem], client_timestamp: datetime) -> BatchSyncRequest:
    """Wrap queue items for the wire, preserving their order."""
    return BatchSyncRequest(
        items=[
            SyncItem(
                client_id=item.id,
                task_id=item.task_id,
                operation=item.operation.value,
                data=item.payload.to_dict(),
            )
            for item in items
        ],
        client_timestamp=client_timestamp,
    )


def to_batch_response(response: BatchSyncResponse) -> BatchResponse:
    """Convert a validated wire response to the engine's types."""
    return BatchResponse(
        processed_items=[
            BatchItemVerdict(
                client_id=p.client_id,
                status=VerdictStatus(p.status),
                server_id=p.server_id,
                resolved_data=p.resolved_data,
                error=p.error,
            )
            for p in response.processed_items
        ]
    )
