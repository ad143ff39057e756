from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

from mongo_changes.audit.models import AuditRecord, ChangeQuery
from mongo_changes.audit.mongo_store import MongoAuditStore
from mongo_changes.errors import AuditStoreError

URI = "mongodb://localhost:27017"
CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def store(collection):
    client = MagicMock()
    client.__getitem__.return_value.__getitem__.return_value = collection
    connections = MagicMock()
    connections.get_client.return_value = client
    return MongoAuditStore(connections, "admin", "cicd_changes_audit")


def _record(**overrides):
    values = dict(
        change_id="chg-20240501-00000001",
        uri=URI,
        database="app",
        operation={"type": "createCollection", "collection": "events"},
        metadata={},
        status="applied",
        message="collection created",
        revert_plan={"type": "dropCollection", "collection": "events", "requiresEmpty": True},
        created_at=CREATED,
    )
    values.update(overrides)
    return AuditRecord(**values)


def test_insert_writes_durable_document_shape(store, collection):
    inserted = ObjectId()
    collection.insert_one.return_value.inserted_id = inserted

    stored = store.insert(_record())

    assert stored.record_id == str(inserted)
    document = collection.insert_one.call_args.args[0]
    assert document == {
        "changeId": "chg-20240501-00000001",
        "target": {"uri": URI, "database": "app"},
        "operation": {"type": "createCollection", "collection": "events"},
        "metadata": {},
        "status": "applied",
        "message": "collection created",
        "revertPlan": {"type": "dropCollection", "collection": "events", "requiresEmpty": True},
        "createdAt": CREATED,
    }


def test_audit_collection_lives_on_target(store):
    store.latest("chg-20240501-00000001", URI)

    store._connections.get_client.assert_called_with(URI)
    client = store._connections.get_client.return_value
    client.__getitem__.assert_called_with("admin")
    client.__getitem__.return_value.__getitem__.assert_called_with("cicd_changes_audit")


def test_latest_queries_newest_first(store, collection):
    record_id = ObjectId()
    collection.find_one.return_value = {**_record().to_document(), "_id": record_id}

    loaded = store.latest("chg-20240501-00000001", URI)

    collection.find_one.assert_called_once_with(
        {"changeId": "chg-20240501-00000001", "target.uri": URI},
        sort=[("createdAt", -1), ("_id", -1)],
    )
    assert loaded.record_id == str(record_id)
    assert loaded.status == "applied"


def test_hand_written_document_with_string_timestamps(store, collection):
    collection.find_one.return_value = {
        **_record().to_document(),
        "_id": ObjectId(),
        "createdAt": "2024-05-01T12:00:00Z",
        "status": "reverted",
        "revertedAt": "2024-05-02",
    }

    payload = store.latest("chg-20240501-00000001", URI).to_dict()

    assert payload["createdAt"] == "2024-05-01T12:00:00Z"
    assert "revertedAt" not in payload
    assert payload["status"] == "reverted"


def test_latest_missing(store, collection):
    collection.find_one.return_value = None

    assert store.latest("chg-20240501-00000001", URI) is None


def test_build_filter_defaults_to_excluding_reverted():
    assert MongoAuditStore.build_filter(URI, ChangeQuery()) == {
        "target.uri": URI,
        "status": {"$ne": "reverted"},
    }


def test_build_filter_with_statuses_and_since():
    query = ChangeQuery(statuses=("applied", "reverted"), since=CREATED)

    assert MongoAuditStore.build_filter(URI, query) == {
        "target.uri": URI,
        "status": {"$in": ["applied", "reverted"]},
        "createdAt": {"$gte": CREATED},
    }


def test_list_applies_paging_and_counts(store, collection):
    cursor = collection.find.return_value.sort.return_value.skip.return_value.limit.return_value
    cursor.__iter__.return_value = iter([{**_record().to_document(), "_id": ObjectId()}])
    collection.count_documents.return_value = 7

    listing = store.list(URI, ChangeQuery(limit=1, skip=3))

    collection.find.return_value.sort.return_value.skip.assert_called_once_with(3)
    collection.find.return_value.sort.return_value.skip.return_value.limit.assert_called_once_with(1)
    assert listing.total == 7
    assert len(listing.items) == 1


def test_mark_reverted_sets_fields(store, collection):
    record_id = ObjectId()
    collection.update_one.return_value.matched_count = 1
    reverted_at = datetime(2024, 5, 2, tzinfo=timezone.utc)

    updated = store.mark_reverted(_record(record_id=str(record_id)), reverted_at, "collection dropped")

    collection.update_one.assert_called_once_with(
        {"_id": record_id},
        {
            "$set": {
                "status": "reverted",
                "revertedAt": reverted_at,
                "revertMessage": "collection dropped",
            }
        },
    )
    assert updated.status == "reverted"


def test_mark_reverted_no_match(store, collection):
    collection.update_one.return_value.matched_count = 0

    with pytest.raises(AuditStoreError):
        store.mark_reverted(_record(record_id=str(ObjectId())), CREATED, "collection dropped")


def test_driver_errors_become_audit_errors(store, collection):
    collection.insert_one.side_effect = AutoReconnect("connection reset")

    with pytest.raises(AuditStoreError, match="audit write failed"):
        store.insert(_record())
