"""
Shared types for tasksync.

Task records, mutation queue items, mutation payloads and sync results. These
are the vocabulary shared by the task store, the mutation queue, the batch
transport and the sync orchestrator.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string.

    Naive values are assumed to be UTC so that local and server timestamps
    always compare.
    """
    if not s:
        return None
    if isinstance(s, datetime):
        value = s
    else:
        value = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime for storage and the wire."""
    if dt is None:
        return None
    if isinstance(dt, str):
        return dt
    return dt.isoformat()


# === Enums ===


class SyncStatus(str, Enum):
    """Sync status of a task record."""

    PENDING = "pending"  # Local changes not yet confirmed by the server
    SYNCED = "synced"  # Server confirmed the latest change
    ERROR = "error"  # Retries exhausted; needs a new mutation to retry


class Operation(str, Enum):
    """Kind of mutation queued against a task."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


VALID_OPERATION_VALUES = frozenset(op.value for op in Operation)


class VerdictStatus(str, Enum):
    """Per-item verdict returned by the remote peer."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


# === Task ===


@dataclass
class Task:
    """A user-visible unit of work."""

    id: str
    title: str
    description: Optional[str] = None
    completed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_deleted: bool = False
    sync_status: SyncStatus = SyncStatus.PENDING
    server_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def snapshot(self) -> "TaskSnapshot":
        """Freeze the user-editable fields for a queue payload."""
        return TaskSnapshot(
            id=self.id,
            title=self.title,
            description=self.description,
            completed=self.completed,
            created_at=self.created_at,
            updated_at=self.updated_at,
            is_deleted=self.is_deleted,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for k, v in d.items():
            if isinstance(v, datetime):
                d[k] = v.isoformat()
        d["sync_status"] = self.sync_status.value
        return d


@dataclass(frozen=True)
class TaskSnapshot:
    """The task fields a create/update carries to the server."""

    id: str
    title: str
    description: Optional[str] = None
    completed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_deleted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "is_deleted": self.is_deleted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskSnapshot":
        if not data.get("id"):
            raise ValueError("Task snapshot requires an id")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            description=data.get("description"),
            completed=bool(data.get("completed", False)),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            is_deleted=bool(data.get("is_deleted", False)),
        )


# === Mutation Payloads ===


@dataclass(frozen=True)
class CreatePayload:
    """Full snapshot of a newly created task."""

    task: TaskSnapshot
    operation: Operation = field(default=Operation.CREATE, init=False)

    @property
    def task_id(self) -> str:
        return self.task.id

    def to_dict(self) -> Dict[str, Any]:
        return self.task.to_dict()


@dataclass(frozen=True)
class UpdatePayload:
    """Full snapshot of a task after an update."""

    task: TaskSnapshot
    operation: Operation = field(default=Operation.UPDATE, init=False)

    @property
    def task_id(self) -> str:
        return self.task.id

    def to_dict(self) -> Dict[str, Any]:
        return self.task.to_dict()


@dataclass(frozen=True)
class DeletePayload:
    """Identifier-only payload for a soft delete."""

    task_id: str
    operation: Operation = field(default=Operation.DELETE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.task_id}


MutationPayload = Union[CreatePayload, UpdatePayload, DeletePayload]


def payload_from_dict(operation: Union[str, Operation], data: Dict[str, Any]) -> MutationPayload:
    """Rebuild the tagged payload variant for an operation."""
    op = Operation(operation)
    if op is Operation.DELETE:
        task_id = data.get("id") or data.get("task_id")
        if not task_id:
            raise ValueError("Delete payload requires an id")
        return DeletePayload(task_id=str(task_id))
    snapshot = TaskSnapshot.from_dict(data)
    if op is Operation.CREATE:
        return CreatePayload(task=snapshot)
    return UpdatePayload(task=snapshot)


# === Queue Types ===


@dataclass
class QueueItem:
    """A mutation waiting for remote confirmation."""

    id: str
    task_id: str
    operation: Operation
    payload: MutationPayload
    queued_at: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


@dataclass(frozen=True)
class FailureOutcome:
    """What recording a failure did to a queue item."""

    item_id: str
    retry_count: int
    exhausted: bool  # True if the item was purged and its task marked error


# === Wire Types ===


@dataclass
class BatchItemVerdict:
    """Per-item verdict from the remote peer."""

    client_id: str
    status: VerdictStatus
    server_id: Optional[str] = None
    resolved_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class BatchResponse:
    """Structural response to a submitted batch."""

    processed_items: List[BatchItemVerdict] = field(default_factory=list)


# === Sync Types ===


@dataclass(frozen=True)
class SyncErrorRecord:
    """One failed item (or the synthetic unreachable entry) of a sync run."""

    task_id: str
    operation: str
    error: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "operation": self.operation,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SyncConflict:
    """Details of a sync conflict that was resolved.

    When the server reports a conflict, the orchestrator resolves it using
    last-write-wins and records both versions here for auditing.
    """

    id: str  # Unique ID for this conflict record
    task_id: str
    local_version: Dict[str, Any]  # Snapshot of local version before resolution
    server_version: Dict[str, Any]  # Snapshot of server version
    resolution: str  # "local_wins" or "server_wins"
    resolved_at: datetime
    policy_decision: Optional[str] = None  # Which rule picked the winner
    diff_hash: Optional[str] = None  # Dedup key over both versions


@dataclass
class SyncResult:
    """Result of one orchestration run.

    ``failed_items`` counts queue items whose failure was recorded (one
    retry increment each). ``errors`` holds one record per failed item plus
    records that match no item: the unreachable entry and verdicts for
    items that were never submitted.
    """

    synced_items: int = 0
    failed_items: int = 0
    errors: List[SyncErrorRecord] = field(default_factory=list)
    conflicts: List[SyncConflict] = field(default_factory=list)
    reachable: bool = True

    @property
    def success(self) -> bool:
        return self.reachable and self.failed_items == 0

    @property
    def conflict_count(self) -> int:
        """Number of conflicts resolved during the run."""
        return len(self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "synced_items": self.synced_items,
            "failed_items": self.failed_items,
            "errors": [e.to_dict() for e in self.errors],
            "conflicts": len(self.conflicts),
        }
