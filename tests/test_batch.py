import logging
from unittest.mock import MagicMock

import pytest
from pymongo.errors import AutoReconnect

from mongo_changes.config import TargetSettings
from mongo_changes.domain.results import RevertResult
from mongo_changes.errors import AuditStoreError, ConfigurationError
from mongo_changes.execution.batch import BatchOrchestrator
from mongo_changes.execution.connections import ConnectionManager
from mongo_changes.execution.executor import ChangeExecutor
from mongo_changes.execution.revert import RevertEngine
from mongo_changes.validation.validator import parse_change_requests

from helpers import collection_request, index_request


def _three_steps(client):
    # Step two collides with an existing index of the same name.
    client["app"]["users"].create_index([("email", 1)], name="ix_taken")
    return parse_change_requests(
        [
            collection_request("events", change_id="chg-20240101-00000001"),
            index_request(spec={"username": 1}, name="ix_taken", change_id="chg-20240101-00000002"),
            collection_request("sessions", change_id="chg-20240101-00000003"),
        ]
    )


def test_failure_rolls_back_applied_steps(batch, client, audit_store):
    result = batch.apply_batch(_three_steps(client))

    assert result.status == "rolled_back"
    assert result.failed_at == 1
    assert [step.status for step in result.results] == ["applied", "failed"]
    assert client["app"].list_collection_names() == ["users"]
    assert "sessions" not in client["app"].collections
    assert audit_store.latest("chg-20240101-00000001", "mongodb://localhost:27017").status == "reverted"
    assert audit_store.latest("chg-20240101-00000003", "mongodb://localhost:27017") is None

    payload = result.to_dict()
    assert payload["status"] == "rolled_back"
    assert payload["failedAt"] == 1


def test_success_returns_ok(batch, client):
    requests = parse_change_requests([collection_request("events"), index_request("events")])

    result = batch.apply_batch(requests)

    assert result.status == "ok"
    assert result.failed_at is None
    assert "failedAt" not in result.to_dict()
    assert [step.status for step in result.results] == ["applied", "applied"]
    assert all(step.change_id.startswith("chg-") for step in result.results)
    assert len({step.change_id for step in result.results}) == 2


def test_continue_on_error(batch, client):
    result = batch.apply_batch(_three_steps(client), stop_on_error=False)

    assert result.status == "ok"
    assert [step.status for step in result.results] == ["applied", "failed", "applied"]
    assert sorted(client["app"].list_collection_names()) == ["events", "sessions", "users"]


def test_simulated_failure_does_not_compensate(batch, client):
    result = batch.apply_batch(_three_steps(client), simulate=True)

    assert result.status == "ok"
    assert [step.status for step in result.results] == ["applied", "failed", "applied"]
    assert client["app"].list_collection_names() == ["users"]


def test_skipped_steps_are_not_compensated(executor, connections, client):
    client["app"].create_collection("events")
    client["app"]["users"].create_index([("email", 1)], name="ix_taken")
    revert_engine = MagicMock()
    orchestrator = BatchOrchestrator(executor, revert_engine, connections)

    result = orchestrator.apply_batch(
        parse_change_requests(
            [
                collection_request("events"),
                index_request(spec={"username": 1}, name="ix_taken"),
            ]
        )
    )

    assert result.status == "rolled_back"
    assert result.results[0].status == "skipped"
    revert_engine.revert.assert_not_called()


def test_compensation_runs_newest_first_and_tolerates_failures(executor, connections, client, caplog):
    client["app"]["users"].create_index([("email", 1)], name="ix_taken")
    revert_engine = MagicMock()
    revert_engine.revert.side_effect = [
        RevertResult(change_id="chg-20240101-00000002", status="failed", message="collection is not empty"),
        RuntimeError("unexpected"),
    ]
    orchestrator = BatchOrchestrator(executor, revert_engine, connections)
    requests = parse_change_requests(
        [
            collection_request("a", change_id="chg-20240101-00000001"),
            collection_request("b", change_id="chg-20240101-00000002"),
            index_request(spec={"username": 1}, name="ix_taken"),
        ]
    )

    with caplog.at_level(logging.WARNING):
        result = orchestrator.apply_batch(requests)

    assert result.status == "rolled_back"
    assert result.failed_at == 2
    called = [call.args[0] for call in revert_engine.revert.call_args_list]
    assert called == ["chg-20240101-00000002", "chg-20240101-00000001"]
    assert "COMPENSATION_FAILED change_id=chg-20240101-00000002" in caplog.text


def test_compensation_swallows_driver_errors(executor, connections, client):
    client["app"]["users"].create_index([("email", 1)], name="ix_taken")
    revert_engine = MagicMock()
    revert_engine.revert.side_effect = AutoReconnect("connection reset")
    orchestrator = BatchOrchestrator(executor, revert_engine, connections)

    result = orchestrator.apply_batch(
        parse_change_requests(
            [collection_request("a"), index_request(spec={"username": 1}, name="ix_taken")]
        )
    )

    assert result.status == "rolled_back"
    assert result.failed_at == 1


def test_step_without_audit_record_is_undone_first(connections, audit_store, client, caplog):
    store = MagicMock(wraps=audit_store)

    def insert(record):
        if record.change_id == "chg-20240101-00000002":
            raise AuditStoreError("audit write failed: disk full")
        return audit_store.insert(record)

    store.insert.side_effect = insert
    orchestrator = BatchOrchestrator(
        ChangeExecutor(connections, store), RevertEngine(connections, store), connections
    )
    requests = parse_change_requests(
        [
            collection_request("events", change_id="chg-20240101-00000001"),
            collection_request("sessions", change_id="chg-20240101-00000002"),
            collection_request("jobs", change_id="chg-20240101-00000003"),
        ]
    )

    with caplog.at_level(logging.INFO):
        result = orchestrator.apply_batch(requests)

    assert result.status == "rolled_back"
    assert result.failed_at == 1
    assert [step.status for step in result.results] == ["applied", "failed"]
    assert result.results[1].mutated is True
    assert client["app"].list_collection_names() == []
    assert audit_store.latest("chg-20240101-00000001", "mongodb://localhost:27017").status == "reverted"
    assert audit_store.latest("chg-20240101-00000002", "mongodb://localhost:27017") is None
    second = caplog.text.index("COMPENSATED change_id=chg-20240101-00000002")
    first = caplog.text.index("COMPENSATED change_id=chg-20240101-00000001")
    assert second < first


def test_disallowed_target_fails_before_any_step(audit_store, executor, client):
    connections = ConnectionManager(
        TargetSettings(allow_uri_regex=r"^mongodb://localhost"), client_factory=lambda uri: client
    )
    orchestrator = BatchOrchestrator(executor, MagicMock(), connections)
    second = collection_request("sessions")
    second["target"]["uri"] = "mongodb://prod.example.com"

    with pytest.raises(ConfigurationError):
        orchestrator.apply_batch(parse_change_requests([collection_request("events"), second]))

    assert client["app"].list_collection_names() == []
