"""Sync reconciliation engine: orchestrator, conflict resolver and transport."""

from .orchestrator import BatchOutcome, SyncOrchestrator, SyncState
from .resolver import Resolution, build_conflict_record, resolve_conflict
from .transport import HttpBatchTransport

__all__ = [
    "BatchOutcome",
    "HttpBatchTransport",
    "Resolution",
    "SyncOrchestrator",
    "SyncState",
    "build_conflict_record",
    "resolve_conflict",
]
