"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from mongo_changes.audit.base import AuditStore
from mongo_changes.audit.db import SqliteAuditStore
from mongo_changes.audit.mongo_store import MongoAuditStore
from mongo_changes.config import Settings, load_settings
from mongo_changes.execution.batch import BatchOrchestrator
from mongo_changes.execution.connections import ClientFactory, ConnectionManager
from mongo_changes.execution.executor import ChangeExecutor
from mongo_changes.execution.revert import RevertEngine
from mongo_changes.integrations.runner import IntegrationRunner


@dataclass
class AppContext:
    """Process-wide collaborators, wired once and shared by every call."""

    settings: Settings
    connections: ConnectionManager
    audit_store: AuditStore
    executor: ChangeExecutor
    revert_engine: RevertEngine
    batch: BatchOrchestrator
    integrations: IntegrationRunner

    def close(self) -> None:
        self.audit_store.close()
        self.connections.close()


def build_audit_store(settings: Settings, connections: ConnectionManager) -> AuditStore:
    audit = settings.audit
    if audit.backend == "sqlite":
        return SqliteAuditStore(audit.sqlite_path, wal=audit.sqlite_wal)
    return MongoAuditStore(connections, audit.database, audit.collection)


def build_app_context(
    settings: Settings, client_factory: ClientFactory | None = None
) -> AppContext:
    connections = ConnectionManager(settings.targets, client_factory=client_factory)
    audit_store = build_audit_store(settings, connections)
    executor = ChangeExecutor(connections, audit_store)
    revert_engine = RevertEngine(
        connections, audit_store, on_already_reverted=settings.revert.on_already_reverted
    )
    return AppContext(
        settings=settings,
        connections=connections,
        audit_store=audit_store,
        executor=executor,
        revert_engine=revert_engine,
        batch=BatchOrchestrator(executor, revert_engine, connections),
        integrations=IntegrationRunner(timeout_seconds=settings.integrations.timeout_seconds),
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Return the cached context, building it from the loaded settings."""
    return build_app_context(load_settings())


def close_app_context() -> None:
    """Release clients and the audit store, then forget the cached context."""
    if get_app_context.cache_info().currsize:
        get_app_context().close()
    get_app_context.cache_clear()
