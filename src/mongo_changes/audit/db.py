"""SQLite access layer for change audit records."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Mapping, Sequence
from uuid import uuid4

from mongo_changes.audit.models import REVERTED, AuditRecord, ChangeListing, ChangeQuery
from mongo_changes.errors import AuditStoreError
from mongo_changes.utils import serialization
from mongo_changes.utils.time import as_utc

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


def _to_db_time(value: datetime) -> str:
    # Fixed-width UTC text so that string comparison is chronological.
    return as_utc(value).isoformat(timespec="microseconds")


def _from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


class SqliteAuditStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS change_audit (
                record_id TEXT PRIMARY KEY,
                change_id TEXT NOT NULL,
                target_uri TEXT NOT NULL,
                target_database TEXT NOT NULL,
                operation TEXT NOT NULL,
                metadata TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT NOT NULL,
                revert_plan TEXT,
                created_at TEXT NOT NULL,
                reverted_at TEXT,
                revert_message TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_change_audit_change
                ON change_audit(change_id, target_uri, created_at);
            CREATE INDEX IF NOT EXISTS idx_change_audit_uri_status_created
                ON change_audit(target_uri, status, created_at);
            """
        )
        self._conn.commit()

    def execute(self, query: str, params: _SqlParams) -> int:
        with self._lock:
            try:
                cursor = self._conn.execute(query, params)
                self._conn.commit()
            except sqlite3.Error as exc:
                raise AuditStoreError(f"audit write failed: {exc}") from exc
            return cursor.rowcount

    def fetch_one(self, query: str, params: _SqlParams) -> sqlite3.Row | None:
        with self._lock:
            try:
                cur = self._conn.execute(query, params)
                return cur.fetchone()
            except sqlite3.Error as exc:
                raise AuditStoreError(f"audit read failed: {exc}") from exc

    def fetch_all(self, query: str, params: _SqlParams) -> list[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.execute(query, params)
                return cur.fetchall()
            except sqlite3.Error as exc:
                raise AuditStoreError(f"audit read failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def insert(self, record: AuditRecord) -> AuditRecord:
        stored = record.with_id(record.record_id or uuid4().hex)
        self.execute(
            """
            INSERT INTO change_audit (
                record_id, change_id, target_uri, target_database, operation, metadata,
                status, message, revert_plan, created_at, reverted_at, revert_message
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stored.record_id,
                stored.change_id,
                stored.uri,
                stored.database,
                serialization.dumps(stored.operation),
                serialization.dumps(stored.metadata),
                stored.status,
                stored.message,
                serialization.dumps(stored.revert_plan) if stored.revert_plan is not None else None,
                _to_db_time(stored.created_at),
                _to_db_time(stored.reverted_at) if stored.reverted_at else None,
                stored.revert_message,
            ),
        )
        return stored

    def latest(self, change_id: str, uri: str) -> AuditRecord | None:
        row = self.fetch_one(
            (
                "SELECT * FROM change_audit WHERE change_id = ? AND target_uri = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1"
            ),
            (change_id, uri),
        )
        if row is None:
            return None
        return self._row_to_record(row)

    def list(self, uri: str, query: ChangeQuery) -> ChangeListing:
        clauses = ["target_uri = ?"]
        params: list[_SqlValue] = [uri]
        if query.statuses:
            placeholders = ",".join("?" for _ in query.statuses)
            clauses.append(f"status IN ({placeholders})")
            params.extend(query.statuses)
        else:
            clauses.append("status != ?")
            params.append(REVERTED)
        if query.since is not None:
            clauses.append("created_at >= ?")
            params.append(_to_db_time(query.since))
        where = " AND ".join(clauses)

        total_row = self.fetch_one(f"SELECT COUNT(*) AS total FROM change_audit WHERE {where}", params)
        rows = self.fetch_all(
            (
                f"SELECT * FROM change_audit WHERE {where} "
                "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
            ),
            [*params, query.limit, query.skip],
        )
        total = int(total_row["total"]) if total_row is not None else 0
        return ChangeListing(total=total, items=[self._row_to_record(row) for row in rows])

    def mark_reverted(self, record: AuditRecord, reverted_at: datetime, message: str) -> AuditRecord:
        if record.record_id is None:
            raise AuditStoreError("cannot update an audit record without an id")
        updated = self.execute(
            """
            UPDATE change_audit
            SET status = ?, reverted_at = ?, revert_message = ?
            WHERE record_id = ?
            """,
            (REVERTED, _to_db_time(reverted_at), message, record.record_id),
        )
        if updated != 1:
            raise AuditStoreError(f"audit record {record.record_id} not found")
        return replace(record, status=REVERTED, reverted_at=as_utc(reverted_at), revert_message=message)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> AuditRecord:
        return AuditRecord(
            record_id=row["record_id"],
            change_id=row["change_id"],
            uri=row["target_uri"],
            database=row["target_database"],
            operation=serialization.loads(row["operation"]) or {},
            metadata=serialization.loads(row["metadata"]) or {},
            status=row["status"],
            message=row["message"],
            revert_plan=serialization.loads(row["revert_plan"]),
            created_at=_from_db_time(row["created_at"]),
            reverted_at=_from_db_time(row["reverted_at"]),
            revert_message=row["revert_message"],
        )
