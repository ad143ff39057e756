from __future__ import annotations

import pytest

from mongo_changes.app import AppContext, build_app_context, get_app_context
from mongo_changes.audit.db import SqliteAuditStore
from mongo_changes.config import AuditSettings, Settings, TargetSettings
from mongo_changes.execution.batch import BatchOrchestrator
from mongo_changes.execution.connections import ConnectionManager
from mongo_changes.execution.executor import ChangeExecutor
from mongo_changes.execution.revert import RevertEngine

from fakes import FakeMongoClient


@pytest.fixture(autouse=True)
def _clear_app_context():
    get_app_context.cache_clear()
    yield
    get_app_context.cache_clear()


@pytest.fixture
def client() -> FakeMongoClient:
    return FakeMongoClient()


@pytest.fixture
def connections(client):
    manager = ConnectionManager(TargetSettings(), client_factory=lambda uri: client)
    yield manager
    manager.close()


@pytest.fixture
def audit_store(tmp_path):
    store = SqliteAuditStore(str(tmp_path / "audit.sqlite"))
    yield store
    store.close()


@pytest.fixture
def executor(connections, audit_store) -> ChangeExecutor:
    return ChangeExecutor(connections, audit_store)


@pytest.fixture
def revert_engine(connections, audit_store) -> RevertEngine:
    return RevertEngine(connections, audit_store)


@pytest.fixture
def batch(executor, revert_engine, connections) -> BatchOrchestrator:
    return BatchOrchestrator(executor, revert_engine, connections)


@pytest.fixture
def make_context(client, tmp_path):
    """Build an AppContext around the fake client; closed after the test."""
    built: list[AppContext] = []

    def _make(targets: TargetSettings | None = None, **audit_overrides) -> AppContext:
        audit = AuditSettings(sqlite_path=str(tmp_path / "ctx.sqlite"), **audit_overrides)
        settings = Settings(targets=targets or TargetSettings(), audit=audit)
        ctx = build_app_context(settings, client_factory=lambda uri: client)
        built.append(ctx)
        return ctx

    yield _make
    for ctx in built:
        ctx.close()
