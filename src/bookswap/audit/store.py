"""SQLite-backed audit trail store with indexed queries.

Provides functions to create the audit table, insert audit entries, and
query the audit trail with flexible filtering.  Uses parameterized queries
exclusively (never string concatenation) to prevent SQL injection.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

from bookswap.audit.models import AuditEntry


def init_audit_table(conn: sqlite3.Connection) -> None:
    """Create the ``audit_log`` table and its indexes if missing.

    Args:
        conn: An open sqlite3.Connection (see ``open_database``).
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            event_type TEXT NOT NULL,
            transaction_id TEXT,
            transaction_kind TEXT,
            actor_id TEXT,
            book_id TEXT,
            status TEXT,
            metadata TEXT
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_transaction ON audit_log (transaction_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_log (actor_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp)")

    conn.commit()


def insert_audit_entry(conn: sqlite3.Connection, entry: AuditEntry) -> int:
    """Insert an audit entry into the database.

    Serializes the metadata dict to a JSON string if present.

    Args:
        conn: An open database connection.
        entry: The audit entry to insert.

    Returns:
        The row ID of the inserted entry.
    """
    metadata_json: str | None = None
    if entry.metadata is not None:
        metadata_json = json.dumps(entry.metadata)

    timestamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

    cursor = conn.execute(
        """
        INSERT INTO audit_log (
            timestamp, event_type, transaction_id, transaction_kind, actor_id,
            book_id, status, metadata
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            timestamp,
            entry.event_type.value,
            entry.transaction_id,
            entry.transaction_kind,
            entry.actor_id,
            entry.book_id,
            entry.status,
            metadata_json,
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def query_audit_trail(
    conn: sqlite3.Connection,
    *,
    actor_id: str | None = None,
    transaction_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    event_type: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Query the audit trail with flexible filtering.

    All filters are optional.  Results are ordered newest first.

    Args:
        conn: An open database connection.
        actor_id: Filter by acting user (exact match).
        transaction_id: Filter by transaction ID (exact match).
        from_date: Filter entries on or after this ISO 8601 date.
        to_date: Filter entries on or before this ISO 8601 date.
        event_type: Filter by event type (exact match).
        limit: Maximum number of results to return (default 50).

    Returns:
        A list of dicts, one per matching audit entry, newest first.
    """
    filters: list[tuple[str, str | None]] = [
        ("actor_id = ?", actor_id),
        ("transaction_id = ?", transaction_id),
        ("timestamp >= ?", from_date),
        ("timestamp <= ?", to_date),
        ("event_type = ?", event_type),
    ]
    active = [(clause, value) for clause, value in filters if value is not None]
    where_clause = ("WHERE " + " AND ".join(clause for clause, _ in active)) if active else ""
    params: list[str | int] = [value for _, value in active if value is not None]
    params.append(limit)

    conn.row_factory = sqlite3.Row
    rows = conn.execute(
        f"SELECT * FROM audit_log {where_clause} ORDER BY timestamp DESC, id DESC LIMIT ?",
        params,
    ).fetchall()

    results: list[dict[str, Any]] = []
    for row in rows:
        entry = dict(row)
        if entry["metadata"] is not None:
            entry["metadata"] = json.loads(entry["metadata"])
        results.append(entry)
    return results
