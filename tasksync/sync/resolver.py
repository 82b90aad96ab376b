"""Last-write-wins conflict resolution.

``resolve_conflict`` is pure: the version with the strictly later
``updated_at`` wins and the server wins ties. ``build_conflict_record`` turns
a resolution into an auditable ``SyncConflict``.
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tasksync.types import SyncConflict, Task

logger = logging.getLogger(__name__)

LOCAL_WINS = "local_wins"
SERVER_WINS = "server_wins"

# Policy decisions recorded with each conflict
NEWER_LOCAL_TIMESTAMP = "newer_local_timestamp"
NEWER_SERVER_TIMESTAMP = "newer_server_timestamp"
SERVER_WINS_TIE = "server_wins_tie"
NO_LOCAL_TIMESTAMP = "no_local_timestamp_fallback"


@dataclass(frozen=True)
class Resolution:
    """Outcome of comparing a local and a server version."""

    winner: Task
    resolution: str  # LOCAL_WINS or SERVER_WINS
    policy_decision: str

    @property
    def local_wins(self) -> bool:
        return self.resolution == LOCAL_WINS


def resolve_conflict(local: Task, server: Task) -> Resolution:
    """Pick the winner between two versions of the same task.

    Local wins only when its ``updated_at`` is strictly later. Equal
    timestamps, or a local version without one, go to the server.
    """
    local_time = local.updated_at
    server_time = server.updated_at

    if local_time is None:
        return Resolution(server, SERVER_WINS, NO_LOCAL_TIMESTAMP)
    if server_time is None or local_time > server_time:
        return Resolution(local, LOCAL_WINS, NEWER_LOCAL_TIMESTAMP)
    if server_time > local_time:
        return Resolution(server, SERVER_WINS, NEWER_SERVER_TIMESTAMP)
    return Resolution(server, SERVER_WINS, SERVER_WINS_TIE)


def build_conflict_hash(local_version: Dict[str, Any], server_version: Dict[str, Any]) -> str:
    """Deterministic hash over both versions, used to dedupe conflict history."""
    payload = {"local": local_version, "server": server_version}
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()


def _version_dict(task: Task) -> Dict[str, Any]:
    # Sync bookkeeping differs between the two sides and is not part of the conflict
    return task.snapshot().to_dict()


def build_conflict_record(
    local: Task,
    server: Task,
    resolution: Resolution,
    resolved_at: Optional[datetime] = None,
) -> SyncConflict:
    """Create a SyncConflict record for the conflict history."""
    local_dict = _version_dict(local)
    server_dict = _version_dict(server)
    return SyncConflict(
        id=str(uuid.uuid4()),
        task_id=local.id,
        local_version=local_dict,
        server_version=server_dict,
        resolution=resolution.resolution,
        resolved_at=resolved_at or datetime.now(timezone.utc),
        policy_decision=resolution.policy_decision,
        diff_hash=build_conflict_hash(local_dict, server_dict),
    )
