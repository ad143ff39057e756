"""Data models for audit records and audit queries."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping

from mongo_changes.utils.time import as_utc, parse_timestamp

REVERTED = "reverted"


@dataclass
class AuditRecord:
    """One change attempt.

    ``to_document`` is the durable shape other tooling reads directly; field
    names there are camelCase and the target is nested.
    """

    change_id: str
    uri: str
    database: str
    operation: dict[str, Any]
    metadata: dict[str, Any]
    status: str
    message: str
    revert_plan: dict[str, Any] | None
    created_at: datetime
    reverted_at: datetime | None = None
    revert_message: str | None = None
    record_id: str | None = None

    @property
    def operation_type(self) -> str | None:
        value = self.operation.get("type")
        return value if isinstance(value, str) else None

    def with_id(self, record_id: str) -> "AuditRecord":
        return replace(self, record_id=record_id)

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "changeId": self.change_id,
            "target": {"uri": self.uri, "database": self.database},
            "operation": self.operation,
            "metadata": self.metadata,
            "status": self.status,
            "message": self.message,
            "revertPlan": self.revert_plan,
            "createdAt": self.created_at,
        }
        if self.reverted_at is not None:
            document["revertedAt"] = self.reverted_at
        if self.revert_message is not None:
            document["revertMessage"] = self.revert_message
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "AuditRecord":
        target = document.get("target") or {}
        created_at = document.get("createdAt")
        reverted_at = document.get("revertedAt")
        record_id = document.get("_id")
        return cls(
            change_id=str(document.get("changeId", "")),
            uri=str(target.get("uri", "")),
            database=str(target.get("database", "")),
            operation=dict(document.get("operation") or {}),
            metadata=dict(document.get("metadata") or {}),
            status=str(document.get("status", "")),
            message=str(document.get("message", "")),
            revert_plan=document.get("revertPlan"),
            created_at=as_utc(created_at) if isinstance(created_at, datetime) else created_at,
            reverted_at=as_utc(reverted_at) if isinstance(reverted_at, datetime) else None,
            revert_message=document.get("revertMessage"),
            record_id=str(record_id) if record_id is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = self.to_document()
        payload["id"] = self.record_id
        if isinstance(self.created_at, datetime):
            payload["createdAt"] = self.created_at.isoformat()
        if isinstance(self.reverted_at, datetime):
            payload["revertedAt"] = self.reverted_at.isoformat()
        return payload


@dataclass(frozen=True)
class ChangeQuery:
    """Filters for listing audit records of one target."""

    statuses: tuple[str, ...] | None = None
    since: datetime | None = None
    limit: int = 100
    skip: int = 0

    @classmethod
    def from_filters(
        cls,
        status: str | None = None,
        since: str | datetime | None = None,
        limit: int | None = None,
        skip: int | None = None,
        only_applied: bool = False,
        default_limit: int = 100,
        max_limit: int = 500,
    ) -> "ChangeQuery":
        if not status and only_applied:
            status = "applied"
        statuses: tuple[str, ...] | None = None
        if status:
            parsed = tuple(part.strip() for part in status.split(",") if part.strip())
            statuses = parsed or None
        effective_limit = default_limit if not limit or limit < 1 else limit
        return cls(
            statuses=statuses,
            since=parse_timestamp(since),
            limit=min(effective_limit, max_limit),
            skip=max(skip or 0, 0),
        )


@dataclass
class ChangeListing:
    total: int
    items: list[AuditRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "items": [item.to_dict() for item in self.items]}
