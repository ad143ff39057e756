"""Audit records kept on the target deployment itself.

Each connection string gets its own audit collection, reached through the
same cached client used to apply changes.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from mongo_changes.audit.models import REVERTED, AuditRecord, ChangeListing, ChangeQuery
from mongo_changes.errors import AuditStoreError
from mongo_changes.execution.connections import ConnectionManager
from mongo_changes.utils.time import as_utc

_NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]


def _record_key(record_id: str) -> Any:
    return ObjectId(record_id) if ObjectId.is_valid(record_id) else record_id


class MongoAuditStore:
    def __init__(self, connections: ConnectionManager, database: str, collection: str) -> None:
        self._connections = connections
        self._database = database
        self._collection = collection

    def _audit_collection(self, uri: str) -> Collection:
        return self._connections.get_client(uri)[self._database][self._collection]

    @staticmethod
    def build_filter(uri: str, query: ChangeQuery) -> dict[str, Any]:
        filter_: dict[str, Any] = {"target.uri": uri}
        if query.statuses:
            filter_["status"] = {"$in": list(query.statuses)}
        else:
            filter_["status"] = {"$ne": REVERTED}
        if query.since is not None:
            filter_["createdAt"] = {"$gte": query.since}
        return filter_

    def insert(self, record: AuditRecord) -> AuditRecord:
        try:
            result = self._audit_collection(record.uri).insert_one(record.to_document())
        except PyMongoError as exc:
            raise AuditStoreError(f"audit write failed: {exc}") from exc
        return record.with_id(str(result.inserted_id))

    def latest(self, change_id: str, uri: str) -> AuditRecord | None:
        try:
            document = self._audit_collection(uri).find_one(
                {"changeId": change_id, "target.uri": uri},
                sort=_NEWEST_FIRST,
            )
        except PyMongoError as exc:
            raise AuditStoreError(f"audit read failed: {exc}") from exc
        if document is None:
            return None
        return AuditRecord.from_document(document)

    def list(self, uri: str, query: ChangeQuery) -> ChangeListing:
        filter_ = self.build_filter(uri, query)
        try:
            collection = self._audit_collection(uri)
            cursor = collection.find(filter_).sort(_NEWEST_FIRST).skip(query.skip).limit(query.limit)
            items = [AuditRecord.from_document(document) for document in cursor]
            total = collection.count_documents(filter_)
        except PyMongoError as exc:
            raise AuditStoreError(f"audit read failed: {exc}") from exc
        return ChangeListing(total=total, items=items)

    def mark_reverted(self, record: AuditRecord, reverted_at: datetime, message: str) -> AuditRecord:
        if record.record_id is None:
            raise AuditStoreError("cannot update an audit record without an id")
        try:
            result = self._audit_collection(record.uri).update_one(
                {"_id": _record_key(record.record_id)},
                {"$set": {"status": REVERTED, "revertedAt": reverted_at, "revertMessage": message}},
            )
        except PyMongoError as exc:
            raise AuditStoreError(f"audit write failed: {exc}") from exc
        if result.matched_count != 1:
            raise AuditStoreError(f"audit record {record.record_id} not found")
        return replace(record, status=REVERTED, reverted_at=as_utc(reverted_at), revert_message=message)

    def close(self) -> None:
        # Clients belong to the connection manager.
        return None
