"""Sync routes.

Client role: ``/sync`` runs the orchestrator against the configured peer and
``/status`` reports the queue. Server role: ``/batch`` applies batches sent
by clients and ``/health`` answers their reachability probe.
"""

import sqlite3
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, status

from tasksync.protocols import SyncInProgressError
from tasksync.sync.wire import BatchSyncRequest, BatchSyncResponse, HealthResponse

from ..batch import process_batch
from ..database import Database, Orchestrator
from ..logging_config import get_logger
from ..models import SyncRunResponse, SyncStatusResponse

logger = get_logger("tasksync.sync")
router = APIRouter(tags=["sync"])


@router.post("/sync", response_model=SyncRunResponse)
def trigger_sync(orchestrator: Orchestrator):
    """Run one sync pass. 503 when the peer is unreachable."""
    if not orchestrator.is_online():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable - offline mode",
        )

    try:
        result = orchestrator.sync(blocking=False)
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except sqlite3.Error as e:
        logger.error(f"Sync failed with database error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Sync operation failed",
        )

    logger.info(
        f"SYNC | synced={result.synced_items} failed={result.failed_items} "
        f"conflicts={result.conflict_count}"
    )
    return result.to_dict()


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(orchestrator: Orchestrator):
    return orchestrator.status()


@router.post("/batch", response_model=BatchSyncResponse)
def receive_batch(request: BatchSyncRequest, db: Database):
    """
    Apply a batch of client mutations.

    Items are processed in order and each gets its own verdict:
    success, conflict (with the stored copy as resolved_data) or error.
    """
    logger.info(f"BATCH | {len(request.items)} items | client_timestamp={request.client_timestamp}")
    return process_batch(db, request)


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc))
