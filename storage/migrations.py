"""Ad-hoc database migrations for the pending entry queue."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_pending_entry_table(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS pendingentry (
                id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0
            )
            """
        )
    )


def ensure_pending_entry_columns(conn) -> None:
    # Queues written before per-attempt bookkeeping only tracked attempts.
    columns = {
        "last_attempt_at": "TEXT",
        "last_error": "TEXT",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "pendingentry", name):
            conn.execute(text(f"ALTER TABLE pendingentry ADD COLUMN {name} {ddl_type}"))


def ensure_pending_entry_indexes(conn) -> None:
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_pendingentry_created_at
            ON pendingentry (created_at)
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_pending_entry_table(conn)
        ensure_pending_entry_columns(conn)
        ensure_pending_entry_indexes(conn)
