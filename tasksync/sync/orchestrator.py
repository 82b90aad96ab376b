"""Sync orchestrator.

Drives one reconciliation run:

    IDLE -> PROBING -> OFFLINE -> IDLE
    IDLE -> PROBING -> DRAINING -> (BATCH_SEND -> APPLYING)* -> IDLE

The queue is drained in fixed-size batches, oldest first. Each batch yields an
immutable BatchOutcome that is folded into the run's SyncResult. Per-item
failures never raise; storage errors (sqlite3.Error) propagate to the caller.
"""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tasksync.config import SyncConfig
from tasksync.logging_config import log_conflict, log_sync
from tasksync.protocols import (
    BatchTransport,
    MutationQueue,
    SyncInProgressError,
    TaskStore,
    TransportError,
)
from tasksync.types import (
    BatchItemVerdict,
    QueueItem,
    SyncConflict,
    SyncErrorRecord,
    SyncResult,
    SyncStatus,
    Task,
    TaskSnapshot,
    VerdictStatus,
    format_datetime,
)

from .resolver import build_conflict_record, resolve_conflict

logger = logging.getLogger(__name__)

UNREACHABLE_ERROR = "Server is not reachable"
NO_VERDICT_ERROR = "No verdict returned for item"
UNRESOLVED_CONFLICT_ERROR = "Conflict could not be resolved"


class SyncState(str, Enum):
    """Orchestrator state."""

    IDLE = "idle"
    PROBING = "probing"
    OFFLINE = "offline"
    DRAINING = "draining"
    BATCH_SEND = "batch_send"
    APPLYING = "applying"


@dataclass(frozen=True)
class BatchOutcome:
    """What one batch contributed to the run."""

    synced: int = 0
    failed: int = 0
    errors: Tuple[SyncErrorRecord, ...] = ()
    conflicts: Tuple[SyncConflict, ...] = ()

    def fold_into(self, result: SyncResult) -> None:
        result.synced_items += self.synced
        result.failed_items += self.failed
        result.errors.extend(self.errors)
        result.conflicts.extend(self.conflicts)


class SyncOrchestrator:
    """Coordinates the queue, the transport and the task store.

    Args:
        store: Task store the verdicts are applied to.
        queue: Mutation queue shared with the store.
        transport: Network boundary to the remote peer.
        config: Batch size, retry threshold and friends. Its ``max_retries``
            must match the queue's, which owns item exhaustion.
        now_fn: Clock, injectable for tests.

    Raises:
        ValueError: If the config and queue disagree on ``max_retries``.
    """

    def __init__(
        self,
        store: TaskStore,
        queue: MutationQueue,
        transport: BatchTransport,
        config: Optional[SyncConfig] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.queue = queue
        self.transport = transport
        self.config = config or SyncConfig(max_retries=queue.max_retries)
        if self.config.max_retries != queue.max_retries:
            raise ValueError(
                f"max_retries mismatch: config has {self.config.max_retries}, "
                f"queue purges at {queue.max_retries}"
            )
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    def _transition(self, state: SyncState) -> None:
        logger.debug(f"Sync state {self._state.value} -> {state.value}")
        self._state = state

    # === Public API ===

    def sync(self, blocking: bool = True) -> SyncResult:
        """Run one reconciliation pass.

        Runs are serialized. With ``blocking=False`` a call made while
        another run is active raises SyncInProgressError instead of waiting.
        """
        if not self._lock.acquire(blocking=blocking):
            raise SyncInProgressError("A sync run is already in progress")
        start = time.monotonic()
        try:
            result = self._run()
        finally:
            self._transition(SyncState.IDLE)
            self._lock.release()

        duration_ms = (time.monotonic() - start) * 1000
        try:
            log_sync(result, duration_ms)
        except OSError as e:
            logger.warning(f"Could not write sync event log: {e}")
        return result

    def is_online(self) -> bool:
        return self.transport.check_health()

    def status(self) -> Dict[str, Any]:
        """Queue size, last sync time and reachability."""
        queue_size = self.queue.size()
        last_sync = self.store.get_last_sync_time()
        return {
            "pending_sync_count": queue_size,
            "last_sync_timestamp": format_datetime(last_sync),
            "is_online": self.is_online(),
            "sync_queue_size": queue_size,
        }

    # === Run ===

    def _run(self) -> SyncResult:
        result = SyncResult()

        self._transition(SyncState.PROBING)
        if not self.transport.check_health():
            self._transition(SyncState.OFFLINE)
            logger.info("Offline - sync skipped, changes stay queued")
            result.reachable = False
            result.errors.append(
                SyncErrorRecord(
                    task_id="", operation="sync", error=UNREACHABLE_ERROR, timestamp=self._now()
                )
            )
            return result

        self._transition(SyncState.DRAINING)
        pending = self.queue.pending_items()
        logger.debug(f"Draining {len(pending)} queued mutations")

        for batch in self._partition(pending, self.config.batch_size):
            outcome = self._process_batch(batch)
            outcome.fold_into(result)
            self._transition(SyncState.DRAINING)

        if result.success or result.synced_items > 0:
            self.store.set_last_sync_time(format_datetime(self._now()))

        logger.info(
            f"Sync complete: synced={result.synced_items}, failed={result.failed_items}, "
            f"conflicts={result.conflict_count}"
        )
        return result

    @staticmethod
    def _partition(items: Sequence[QueueItem], size: int) -> List[List[QueueItem]]:
        return [list(items[i : i + size]) for i in range(0, len(items), size)]

    def _process_batch(self, batch: List[QueueItem]) -> BatchOutcome:
        self._transition(SyncState.BATCH_SEND)
        try:
            response = self.transport.send_batch(batch, self._now())
        except TransportError as e:
            logger.warning(f"Batch of {len(batch)} failed wholesale: {e}")
            errors = tuple(self._fail(item, str(e)) for item in batch)
            return BatchOutcome(failed=len(batch), errors=errors)

        self._transition(SyncState.APPLYING)
        matched, unknown, missing = self._match_verdicts(batch, response.processed_items)

        synced = 0
        errors: List[SyncErrorRecord] = []
        conflicts: List[SyncConflict] = []

        for item, verdict in matched:
            if verdict.status is VerdictStatus.SUCCESS:
                self._apply_success(item, verdict)
                synced += 1
                continue

            if verdict.status is VerdictStatus.CONFLICT:
                conflict = self._apply_conflict(item, verdict)
                if conflict is not None:
                    conflicts.append(conflict)
                    synced += 1
                    continue
                message = verdict.error or UNRESOLVED_CONFLICT_ERROR
            else:
                message = verdict.error or "Unknown error"

            errors.append(self._fail(item, message))

        for item in missing:
            errors.append(self._fail(item, NO_VERDICT_ERROR))

        failed = len(errors)

        # Reported, but no queue item failed
        for verdict in unknown:
            logger.warning(f"Verdict for unknown item {verdict.client_id} ignored")
            errors.append(
                SyncErrorRecord(
                    task_id=verdict.client_id,
                    operation="unknown",
                    error=f"Verdict does not match any submitted item: {verdict.client_id}",
                    timestamp=self._now(),
                )
            )

        return BatchOutcome(
            synced=synced,
            failed=failed,
            errors=tuple(errors),
            conflicts=tuple(conflicts),
        )

    @staticmethod
    def _match_verdicts(
        batch: List[QueueItem], verdicts: Sequence[BatchItemVerdict]
    ) -> Tuple[List[Tuple[QueueItem, BatchItemVerdict]], List[BatchItemVerdict], List[QueueItem]]:
        """Pair verdicts with submitted items.

        A verdict matches by position when its ``client_id`` names the item
        at that position (by item id or task id), otherwise by item id, then
        by the first unmatched item of the same task. Pairs come back in
        batch order so per-task order is kept.
        """
        positions = {item.id: index for index, item in enumerate(batch)}
        consumed: set = set()
        pairs: List[Tuple[int, QueueItem, BatchItemVerdict]] = []
        unknown: List[BatchItemVerdict] = []

        for index, verdict in enumerate(verdicts):
            item: Optional[QueueItem] = None
            if index < len(batch) and batch[index].id not in consumed:
                candidate = batch[index]
                if verdict.client_id in (candidate.id, candidate.task_id):
                    item = candidate
            if item is None and verdict.client_id in positions:
                candidate = batch[positions[verdict.client_id]]
                if candidate.id not in consumed:
                    item = candidate
            if item is None:
                item = next(
                    (c for c in batch if c.id not in consumed and c.task_id == verdict.client_id),
                    None,
                )
            if item is None:
                unknown.append(verdict)
                continue
            consumed.add(item.id)
            pairs.append((positions[item.id], item, verdict))

        pairs.sort(key=lambda p: p[0])
        missing = [item for item in batch if item.id not in consumed]
        return [(item, verdict) for _, item, verdict in pairs], unknown, missing

    # === Verdict Application ===

    def _apply_success(self, item: QueueItem, verdict: BatchItemVerdict) -> None:
        self.store.confirm_item(
            item.id,
            item.task_id,
            server_id=verdict.server_id,
            synced_at=self._now(),
        )

    def _apply_conflict(self, item: QueueItem, verdict: BatchItemVerdict) -> Optional[SyncConflict]:
        """Resolve a conflict verdict. Returns None if it cannot be resolved."""
        local = self.store.get_task(item.task_id, include_deleted=True)
        if local is None or not verdict.resolved_data:
            logger.warning(f"Conflict on task {item.task_id} has nothing to resolve against")
            return None

        try:
            server = self._server_task(local, verdict)
        except ValueError as e:
            logger.warning(f"Conflict on task {item.task_id} carried unusable server data: {e}")
            return None

        resolution = resolve_conflict(local, server)
        synced_at = self._now()

        self.store.confirm_item(
            item.id,
            item.task_id,
            server_id=server.server_id,
            synced_at=synced_at,
            server_version=None if resolution.local_wins else server,
        )

        conflict = build_conflict_record(local, server, resolution, resolved_at=synced_at)
        logger.info(
            f"Conflict on task {item.task_id} resolved: {resolution.resolution} "
            f"({resolution.policy_decision})"
        )
        try:
            self.store.save_sync_conflict(conflict)
            log_conflict(item.task_id, resolution.resolution, resolution.policy_decision)
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Could not record conflict for task {item.task_id}: {e}")
        return conflict

    @staticmethod
    def _server_task(local: Task, verdict: BatchItemVerdict) -> Task:
        data = dict(verdict.resolved_data or {})
        data.setdefault("id", local.id)
        snapshot = TaskSnapshot.from_dict(data)
        return Task(
            id=local.id,
            title=snapshot.title,
            description=snapshot.description,
            completed=snapshot.completed,
            created_at=snapshot.created_at or local.created_at,
            updated_at=snapshot.updated_at,
            is_deleted=snapshot.is_deleted,
            sync_status=SyncStatus.SYNCED,
            server_id=verdict.server_id or data.get("server_id"),
        )

    def _fail(self, item: QueueItem, message: str) -> SyncErrorRecord:
        self.queue.record_failure(item, message)
        return SyncErrorRecord(
            task_id=item.task_id,
            operation=item.operation.value,
            error=message,
            timestamp=self._now(),
        )
