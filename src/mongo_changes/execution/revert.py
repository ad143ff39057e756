"""Undo the most recent audited attempt of a change."""

from __future__ import annotations

import logging
from typing import Literal

from pymongo.database import Database
from pymongo.errors import PyMongoError

from mongo_changes.audit.base import AuditStore
from mongo_changes.audit.models import REVERTED, AuditRecord
from mongo_changes.domain.changes import derive_index_name
from mongo_changes.domain.results import (
    DropCollectionPlan,
    DropIndexPlan,
    RevertPlan,
    RevertResult,
    revert_plan_from_dict,
)
from mongo_changes.errors import AuditStoreError
from mongo_changes.execution.connections import ConnectionManager
from mongo_changes.utils.time import utc_now

logger = logging.getLogger(__name__)

AlreadyRevertedPolicy = Literal["reject", "noop"]

ALREADY_REVERTED_MESSAGE = "change already reverted"


def _recorded_index_name(record: AuditRecord) -> str:
    plan = revert_plan_from_dict(record.revert_plan)
    if isinstance(plan, DropIndexPlan) and plan.name:
        return plan.name
    options = record.operation.get("options") or {}
    if isinstance(options, dict) and options.get("name"):
        return str(options["name"])
    return derive_index_name(dict(record.operation.get("spec") or {}))


def _undo(database: Database, plan: RevertPlan) -> tuple[bool, str]:
    """Run ``plan`` against ``database``; a populated collection is left alone."""
    collection = database[plan.collection]
    if isinstance(plan, DropIndexPlan):
        try:
            collection.drop_index(plan.name)
        except PyMongoError as exc:
            return False, f"dropIndex failed: {exc}"
        return True, "index dropped"
    if plan.requires_empty:
        try:
            count = collection.count_documents({})
        except PyMongoError as exc:
            return False, f"countDocuments failed: {exc}"
        if count > 0:
            return False, "collection is not empty"
    try:
        database.drop_collection(plan.collection)
    except PyMongoError as exc:
        return False, f"dropCollection failed: {exc}"
    return True, "collection dropped"


class RevertEngine:
    def __init__(
        self,
        connections: ConnectionManager,
        audit_store: AuditStore,
        on_already_reverted: AlreadyRevertedPolicy = "reject",
    ) -> None:
        self._connections = connections
        self._audit = audit_store
        self._on_already_reverted = on_already_reverted

    def revert(self, change_id: str, uri: str, database: str | None = None) -> RevertResult:
        """Undo the newest audit record for ``(change_id, uri)``.

        ``database`` overrides the database recorded on the audit entry. A
        populated collection is never dropped.
        """
        client = self._connections.get_client(uri)
        try:
            record = self._audit.latest(change_id, uri)
        except AuditStoreError as exc:
            return self._finish(change_id, "failed", f"audit lookup failed: {exc}")
        if record is None:
            return self._finish(change_id, "failed", "changeId not found")

        if record.status == REVERTED:
            if self._on_already_reverted == "noop":
                return self._finish(change_id, "reverted", ALREADY_REVERTED_MESSAGE)
            return self._finish(change_id, "failed", ALREADY_REVERTED_MESSAGE)

        target_db = client[database or record.database]
        collection = str(record.operation.get("collection", ""))

        match record.operation_type:
            case "createIndex":
                plan: RevertPlan = DropIndexPlan(
                    collection=collection, name=_recorded_index_name(record)
                )
            case "createCollection":
                plan = DropCollectionPlan(collection=collection)
            case _:
                return self._finish(change_id, "failed", "unsupported revert type")

        undone, message = _undo(target_db, plan)
        if not undone:
            return self._finish(change_id, "failed", message)
        return self._mark_reverted(record, message)

    def discard(self, change_id: str, uri: str, database: str, plan: RevertPlan) -> RevertResult:
        """Undo ``plan`` directly on the target.

        For changes that mutated the target but left no audit record to
        revert through. Nothing is written to the audit store.
        """
        target_db = self._connections.get_client(uri)[database]
        undone, message = _undo(target_db, plan)
        return self._finish(change_id, "reverted" if undone else "failed", message)

    def _mark_reverted(self, record: AuditRecord, message: str) -> RevertResult:
        try:
            self._audit.mark_reverted(record, utc_now(), message)
        except AuditStoreError as exc:
            logger.error("AUDIT_WRITE_FAILED change_id=%s action=revert error=%s", record.change_id, exc)
            return self._finish(record.change_id, "failed", f"{message} but audit update failed: {exc}")
        return self._finish(record.change_id, "reverted", message)

    @staticmethod
    def _finish(change_id: str, status: Literal["reverted", "failed"], message: str) -> RevertResult:
        logger.info("REVERT change_id=%s status=%s message=%s", change_id, status, message)
        return RevertResult(change_id=change_id, status=status, message=message)
