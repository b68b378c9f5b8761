"""SQLite storage adapter.

Implements the core LedgerStoragePort using a simple SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from budgetwatch.core.errors import UniqueViolation
from budgetwatch.core.models import DispatchRecord

UNIQUE_DISPATCH_CONSTRAINT = "dispatch_records(event_id, recipient, content_hash)"


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the LedgerStoragePort contract."""

    def __init__(self, db_path: str, timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # One connection per operation keeps the adapter safe to share
        # between threads; SQLite serializes the writers.
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - dispatch_records: one row per reserved alert (append-only)
        """

        with self._connect() as conn:
            # dispatch_records is the ledger behind at-most-once delivery.
            # Fields:
            # - id: auto-increment primary key
            # - event_id: alert identity, e.g. budget:42
            # - recipient: normalized recipient address
            # - cycle_key: coarse cooldown bucket (tier, threshold, month)
            # - content_hash: SHA-256 of the canonical alert content
            # - context_snapshot: JSON copy of the content that was hashed
            # - sent_at: reservation timestamp (UTC, ISO-8601)
            # The UNIQUE constraint is the only source of truth for dedup:
            # concurrent workers race on the insert, not on a prior SELECT.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dispatch_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL,
                    recipient TEXT NOT NULL,
                    cycle_key TEXT NOT NULL,
                    content_hash TEXT NOT NULL CHECK (length(content_hash) = 64),
                    context_snapshot TEXT,
                    sent_at TIMESTAMP NOT NULL,
                    UNIQUE (event_id, recipient, content_hash)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_dispatch_records_cycle
                ON dispatch_records (event_id, cycle_key)
                """
            )

    def insert_dispatch(self, record: DispatchRecord) -> None:
        """Insert a dispatch record; raise UniqueViolation on a duplicate triple."""

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO dispatch_records (
                        event_id,
                        recipient,
                        cycle_key,
                        content_hash,
                        context_snapshot,
                        sent_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.event_id,
                        record.recipient,
                        record.cycle_key,
                        record.content_hash,
                        json.dumps(record.context_snapshot, default=str, sort_keys=True),
                        record.sent_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if exc.sqlite_errorcode == sqlite3.SQLITE_CONSTRAINT_UNIQUE:
                raise UniqueViolation(UNIQUE_DISPATCH_CONSTRAINT, record.content_hash) from exc
            raise

    def delete_dispatch(self, event_id: str, recipient: str, content_hash: str) -> bool:
        """Remove a reservation; return True when a row was deleted."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                DELETE FROM dispatch_records
                WHERE event_id = ? AND recipient = ? AND content_hash = ?
                """,
                (event_id, recipient, content_hash),
            )
            return cur.rowcount > 0

    def exists_in_cycle(self, event_id: str, cycle_key: str) -> bool:
        """Check if any alert was reserved for the event in this cycle."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM dispatch_records WHERE event_id = ? AND cycle_key = ? LIMIT 1",
                (event_id, cycle_key),
            ).fetchone()
        return row is not None

    def list_records(self, event_id: Optional[str] = None, limit: int = 100) -> list[DispatchRecord]:
        """Return the most recent dispatch records, optionally for one event."""

        query = "SELECT * FROM dispatch_records"
        params: tuple = ()
        if event_id:
            query += " WHERE event_id = ?"
            params = (event_id,)
        query += " ORDER BY id DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(query, params + (limit,)).fetchall()
        return [
            DispatchRecord(
                event_id=row["event_id"],
                recipient=row["recipient"],
                cycle_key=row["cycle_key"],
                content_hash=row["content_hash"],
                context_snapshot=json.loads(row["context_snapshot"]) if row["context_snapshot"] else {},
                sent_at=datetime.fromisoformat(row["sent_at"]),
            )
            for row in rows
        ]
