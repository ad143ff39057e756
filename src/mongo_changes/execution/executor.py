"""Apply a single validated change, idempotently, and audit the attempt."""

from __future__ import annotations

import logging
import time
from typing import NamedTuple

from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

from mongo_changes.audit.base import AuditStore
from mongo_changes.audit.models import AuditRecord
from mongo_changes.domain.changes import ChangeRequest, CreateCollection, CreateIndex
from mongo_changes.domain.ids import new_change_id
from mongo_changes.domain.results import (
    ChangeResult,
    ChangeStatus,
    DropCollectionPlan,
    DropIndexPlan,
    RevertPlan,
)
from mongo_changes.errors import AuditStoreError, ExecutionError
from mongo_changes.execution.connections import ConnectionManager
from mongo_changes.utils.time import utc_now

logger = logging.getLogger(__name__)

# Server error codes raised when another caller created the resource first.
NAMESPACE_EXISTS = 48
INDEX_CONFLICT_CODES = frozenset({85, 86})  # IndexOptionsConflict, IndexKeySpecsConflict


class _Outcome(NamedTuple):
    status: ChangeStatus
    message: str
    revert_plan: RevertPlan | None
    mutated: bool = False


def _direction(value: object) -> object:
    # Servers may report numeric directions as doubles.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _index_keys_by_name(collection: Collection) -> dict[str, list[tuple[str, object]]]:
    # A collection that does not exist yet reports no indexes.
    info = collection.index_information()
    return {
        name: [(str(field), _direction(direction)) for field, direction in spec.get("key", [])]
        for name, spec in info.items()
    }


class ChangeExecutor:
    def __init__(self, connections: ConnectionManager, audit_store: AuditStore) -> None:
        self._connections = connections
        self._audit = audit_store

    def apply(self, request: ChangeRequest, simulate: bool = False) -> ChangeResult:
        """Apply ``request`` unless it is already satisfied.

        Returns ``applied``, ``skipped`` or ``failed``; errors raised while
        applying never propagate. Outside simulation exactly one audit
        record is written per call, and ``mutated`` is set once the target
        was actually changed. Raises ``ConfigurationError`` only when the
        target itself is not allowed.
        """
        started = time.perf_counter()
        change_id = request.change_id or new_change_id()
        client = self._connections.get_client(request.target.uri)
        database = client[request.target.database]

        try:
            outcome = self._dispatch(database, request, simulate)
        except ExecutionError as exc:
            outcome = _Outcome("failed", str(exc), None)
        except PyMongoError as exc:
            logger.warning("APPLY_ERROR change_id=%s error=%s", change_id, exc)
            outcome = _Outcome("failed", str(exc), None)
        except Exception as exc:
            logger.exception("APPLY_ERROR change_id=%s unexpected error", change_id)
            outcome = _Outcome("failed", str(exc) or type(exc).__name__, None)

        if not simulate:
            outcome = self._record(change_id, request, outcome)

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "APPLY change_id=%s type=%s database=%s collection=%s status=%s simulate=%s "
            "duration_ms=%d",
            change_id,
            request.operation.type,
            request.target.database,
            request.operation.collection,
            outcome.status,
            simulate,
            duration_ms,
        )
        return ChangeResult(
            change_id=change_id,
            status=outcome.status,
            message=outcome.message,
            revert_plan=outcome.revert_plan,
            duration_ms=duration_ms,
            mutated=outcome.mutated,
        )

    def _dispatch(self, database: Database, request: ChangeRequest, simulate: bool) -> _Outcome:
        match request.operation:
            case CreateCollection() as operation:
                return self._create_collection(database, operation, simulate)
            case CreateIndex() as operation:
                return self._create_index(database, operation, simulate)
            case _:
                raise ExecutionError("unsupported operation type")

    def _create_collection(
        self, database: Database, operation: CreateCollection, simulate: bool
    ) -> _Outcome:
        plan = DropCollectionPlan(collection=operation.collection)
        if database.list_collection_names(filter={"name": operation.collection}):
            return _Outcome("skipped", "collection already exists", plan)
        if simulate:
            return _Outcome("applied", "collection would be created", plan)
        try:
            database.create_collection(operation.collection, **(operation.options or {}))
        except CollectionInvalid:
            return self._lost_race(operation.collection, plan)
        except OperationFailure as exc:
            if exc.code != NAMESPACE_EXISTS:
                raise
            return self._lost_race(operation.collection, plan)
        return _Outcome("applied", "collection created", plan, mutated=True)

    def _create_index(self, database: Database, operation: CreateIndex, simulate: bool) -> _Outcome:
        name = operation.index_name
        plan = DropIndexPlan(collection=operation.collection, name=name)
        collection = database[operation.collection]

        existing = _index_keys_by_name(collection).get(name)
        if existing is not None:
            if existing == operation.index_keys:
                return _Outcome("skipped", "index with same name and keys already exists", plan)
            raise ExecutionError("index name exists with different keys")

        if simulate:
            return _Outcome("applied", "index would be created", plan)
        try:
            collection.create_index(operation.index_keys, **operation.index_kwargs())
        except OperationFailure as exc:
            if exc.code not in INDEX_CONFLICT_CODES:
                raise
            winner = _index_keys_by_name(collection).get(name)
            if winner is None:
                raise
            if winner != operation.index_keys:
                raise ExecutionError("index name exists with different keys") from exc
            return self._lost_race(f"{operation.collection}.{name}", plan)
        return _Outcome("applied", "index created", plan, mutated=True)

    @staticmethod
    def _lost_race(resource: str, plan: RevertPlan) -> _Outcome:
        logger.info("APPLY_RACE resource=%s created concurrently, skipping", resource)
        if isinstance(plan, DropIndexPlan):
            return _Outcome("skipped", "index with same name and keys already exists", plan)
        return _Outcome("skipped", "collection already exists", plan)

    def _record(self, change_id: str, request: ChangeRequest, outcome: _Outcome) -> _Outcome:
        record = AuditRecord(
            change_id=change_id,
            uri=request.target.uri,
            database=request.target.database,
            operation=request.operation_document(),
            metadata=dict(request.metadata),
            status=outcome.status,
            message=outcome.message,
            revert_plan=outcome.revert_plan.to_dict() if outcome.revert_plan else None,
            created_at=utc_now(),
        )
        try:
            self._audit.insert(record)
        except AuditStoreError as exc:
            logger.error("AUDIT_WRITE_FAILED change_id=%s status=%s error=%s", change_id, outcome.status, exc)
            return _Outcome(
                "failed",
                f"audit write failed after {outcome.status}: {exc}",
                outcome.revert_plan,
                outcome.mutated,
            )
        return outcome
