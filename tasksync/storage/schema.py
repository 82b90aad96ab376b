"""Database schema and migration logic for tasksync SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
- Schema migration (migrate_schema)
"""

import logging
import os
import sqlite3
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 3  # v3: sync conflict policy_decision column

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "tasks",
        "sync_queue",
        "sync_meta",
        "sync_conflicts",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Tasks (current local state)
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    completed INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0,
    sync_status TEXT DEFAULT 'pending',  -- pending, synced, error
    server_id TEXT,
    last_synced_at TEXT,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_tasks_sync_status ON tasks(sync_status);
CREATE INDEX IF NOT EXISTS idx_tasks_deleted ON tasks(is_deleted);

-- Mutation queue (one row per pending create/update/delete)
CREATE TABLE IF NOT EXISTS sync_queue (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    operation TEXT NOT NULL,  -- create, update, delete
    data TEXT NOT NULL,  -- JSON payload snapshot at enqueue time
    created_at TEXT NOT NULL,
    retry_count INTEGER DEFAULT 0,
    error_message TEXT,
    last_attempt_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_task ON sync_queue(task_id);
CREATE INDEX IF NOT EXISTS idx_sync_queue_created ON sync_queue(created_at);

-- Sync metadata (tracks last sync time)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Sync conflict history (resolved conflicts, for auditing)
CREATE TABLE IF NOT EXISTS sync_conflicts (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    local_version TEXT NOT NULL,
    server_version TEXT NOT NULL,
    resolution TEXT NOT NULL,  -- local_wins, server_wins
    resolved_at TEXT NOT NULL,
    policy_decision TEXT,
    diff_hash TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_conflicts_resolved ON sync_conflicts(resolved_at);
CREATE INDEX IF NOT EXISTS idx_sync_conflicts_task ON sync_conflicts(task_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_conflicts_hash
    ON sync_conflicts(diff_hash) WHERE diff_hash IS NOT NULL;
"""


def init_db(conn: sqlite3.Connection, db_path: Optional[Path] = None) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions). None for
            in-memory databases.
    """
    # Run migrations first, before executing the full schema
    migrate_schema(conn)

    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    else:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    conn.commit()

    if db_path is not None:
        # Owner read/write only
        try:
            os.chmod(db_path, 0o600)
        except OSError as e:
            logger.warning(f"Could not set secure permissions: {e}")


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Run schema migrations for existing databases.

    Handles adding new columns to existing tables.
    """
    tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    table_names = {t[0] for t in tables}

    if "tasks" not in table_names:
        # Fresh database, no migration needed
        return

    def get_columns(table: str) -> set:
        validate_table_name(table)
        cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return {c[1] for c in cols}

    migrations = []

    task_cols = get_columns("tasks")
    if "error_message" not in task_cols:
        migrations.append("ALTER TABLE tasks ADD COLUMN error_message TEXT")

    if "sync_queue" in table_names:
        queue_cols = get_columns("sync_queue")
        if "last_attempt_at" not in queue_cols:
            migrations.append("ALTER TABLE sync_queue ADD COLUMN last_attempt_at TEXT")

    if "sync_conflicts" in table_names:
        conflict_cols = get_columns("sync_conflicts")
        if "policy_decision" not in conflict_cols:
            migrations.append("ALTER TABLE sync_conflicts ADD COLUMN policy_decision TEXT")

    for migration in migrations:
        logger.info(f"Running migration: {migration}")
        conn.execute(migration)

    if migrations:
        conn.commit()
