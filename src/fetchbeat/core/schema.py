"""SQLite schema for the shared store.

Three tables:

- ``scheduler_leases``: one row per lease resource (``scheduler-main``)
- ``scheduler_executions``: append-only ledger of job runs
- ``users``: preference documents with an optimistic-concurrency version
"""

from __future__ import annotations

from fetchbeat.core.protocols import Connection

SCHEMA = """
CREATE TABLE IF NOT EXISTS scheduler_leases (
    resource        TEXT PRIMARY KEY,
    holder          TEXT NOT NULL,
    acquired_at     TEXT NOT NULL,
    heartbeat_at    TEXT NOT NULL,
    expires_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scheduler_executions (
    id              TEXT PRIMARY KEY,
    execution_key   TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    job_id          TEXT NOT NULL,
    job_name        TEXT NOT NULL DEFAULT '',
    scheduled_date  TEXT NOT NULL,
    trigger_source  TEXT NOT NULL DEFAULT 'schedule',
    status          TEXT NOT NULL,
    failure_kind    TEXT,
    error           TEXT,
    topics          TEXT NOT NULL DEFAULT '[]',
    created_at      TEXT NOT NULL,
    started_at      TEXT,
    finished_at     TEXT,
    duration_ms     INTEGER
);

CREATE INDEX IF NOT EXISTS idx_executions_key
    ON scheduler_executions (execution_key, created_at);
CREATE INDEX IF NOT EXISTS idx_executions_created
    ON scheduler_executions (created_at);
CREATE INDEX IF NOT EXISTS idx_executions_status
    ON scheduler_executions (status, created_at);

CREATE TABLE IF NOT EXISTS users (
    id              TEXT PRIMARY KEY,
    version         INTEGER NOT NULL DEFAULT 0,
    document        TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""


def apply_schema(conn: Connection) -> None:
    """Create every table and index if missing. Idempotent."""
    conn.executescript(SCHEMA)


__all__ = ["SCHEMA", "apply_schema"]
