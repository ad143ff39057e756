"""Audit store interface shared by the MongoDB and SQLite backends."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from mongo_changes.audit.models import AuditRecord, ChangeListing, ChangeQuery


class AuditStore(Protocol):
    """Append-only log of change attempts.

    Records are inserted once and only ever updated to mark them reverted.
    Lookups are scoped to the connection string the change was made against.
    Backend failures surface as ``AuditStoreError``.
    """

    def insert(self, record: AuditRecord) -> AuditRecord: ...

    def latest(self, change_id: str, uri: str) -> AuditRecord | None: ...

    def list(self, uri: str, query: ChangeQuery) -> ChangeListing: ...

    def mark_reverted(
        self, record: AuditRecord, reverted_at: datetime, message: str
    ) -> AuditRecord: ...

    def close(self) -> None: ...
